"""
Telephony Callback Events
=========================

Twilio posts form-encoded callbacks to the errand callback URL for three
different reasons: a speech <Gather> finished, a keypad <Gather> finished, or
the call changed status. The form fields present tell them apart:

    SpeechResult present and non-empty  -> SpeechEvent
    Digits present (possibly empty)     -> DigitsEvent
    CallStatus completed/busy/...       -> TerminalStatusEvent
    CallStatus ringing/in-progress      -> ProgressStatusEvent
    anything else                       -> UnrecognizedEvent

``decode_callback`` does this once at the boundary so the reconciler can
dispatch on ``kind``.
"""

from typing import Annotated, Literal, Mapping, Optional, Union

from pydantic import BaseModel, Field

TERMINAL_CALL_STATUSES = ("completed", "busy", "no-answer", "canceled", "failed")
PROGRESS_CALL_STATUSES = ("ringing", "in-progress")


class _CallbackBase(BaseModel):
    task_id: str
    call_sid: Optional[str] = None
    call_status: Optional[str] = None


class SpeechEvent(_CallbackBase):
    kind: Literal["speech"] = "speech"
    speech: str
    confidence: Optional[float] = None


class DigitsEvent(_CallbackBase):
    kind: Literal["digits"] = "digits"
    digits: str = ""


class TerminalStatusEvent(_CallbackBase):
    kind: Literal["terminal_status"] = "terminal_status"
    call_status: str
    error_code: Optional[str] = None


class ProgressStatusEvent(_CallbackBase):
    kind: Literal["progress_status"] = "progress_status"
    call_status: str


class UnrecognizedEvent(_CallbackBase):
    kind: Literal["unrecognized"] = "unrecognized"


CallbackEvent = Annotated[
    Union[SpeechEvent, DigitsEvent, TerminalStatusEvent, ProgressStatusEvent, UnrecognizedEvent],
    Field(discriminator="kind"),
]


def _parse_confidence(raw: Optional[str]) -> Optional[float]:
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except ValueError:
        return None


def decode_callback(task_id: str, form: Mapping[str, str]) -> CallbackEvent:
    """Turn Twilio's form fields into exactly one callback event."""
    call_sid = form.get("CallSid") or None
    call_status = form.get("CallStatus") or None
    speech = (form.get("SpeechResult") or "").strip()

    if speech:
        return SpeechEvent(
            task_id=task_id,
            call_sid=call_sid,
            call_status=call_status,
            speech=speech,
            confidence=_parse_confidence(form.get("Confidence")),
        )
    if "Digits" in form:
        return DigitsEvent(
            task_id=task_id,
            call_sid=call_sid,
            call_status=call_status,
            digits=(form.get("Digits") or "").strip(),
        )
    if call_status in TERMINAL_CALL_STATUSES:
        return TerminalStatusEvent(
            task_id=task_id,
            call_sid=call_sid,
            call_status=call_status,
            error_code=form.get("ErrorCode") or None,
        )
    if call_status in PROGRESS_CALL_STATUSES:
        return ProgressStatusEvent(task_id=task_id, call_sid=call_sid, call_status=call_status)
    return UnrecognizedEvent(task_id=task_id, call_sid=call_sid, call_status=call_status)
