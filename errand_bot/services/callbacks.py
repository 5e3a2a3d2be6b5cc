"""
Telephony callback reconciliation.

Twilio reports back on a task's call out of band: what the business said,
which key they pressed, and how the call ended. Each callback is decoded
once into a CallbackEvent (schemas/callbacks.py) and handled here:

    speech          -> ask the LLM: keep talking (call_in_progress + Gather),
                       or end as appointment_confirmed / appointment_declined
    digits          -> "1" confirmed, other keys declined, none pressed failed
    terminal status -> call_completed / call_failed_busy / call_failed_no_answer /
                       call_canceled / call_failed
    progress status -> call_ringing / call_in_progress

Every handled event commits one transition and returns TwiML for Twilio.
Callbacks for unknown tasks, or carrying a different Call SID than the task's
call, are acknowledged with an empty <Response/> and change nothing.

Errors while handling one event are logged, recorded as a ``failed``
transition and answered with a minimal acknowledgement, so Twilio does not
retry and the process keeps serving.
"""

import logging
from typing import Optional

from starlette.concurrency import run_in_threadpool

from ..llm_client import TurnDecision
from ..schemas import (
    CallOutcome,
    CallbackEvent,
    ConversationTurn,
    DigitsEvent,
    ParsedIntent,
    ProgressStatusEvent,
    SpeechEvent,
    TaskRecord,
    TaskStatus,
    TaskUpdate,
    TerminalStatusEvent,
)
from ..telephony import empty_twiml, gather_twiml, goodbye_twiml
from .state_machine import TaskStateMachine

logger = logging.getLogger(__name__)

TERMINAL_STATUS_MAP = {
    "completed": TaskStatus.CALL_COMPLETED,
    "busy": TaskStatus.CALL_FAILED_BUSY,
    "no-answer": TaskStatus.CALL_FAILED_NO_ANSWER,
    "canceled": TaskStatus.CALL_CANCELED,
    "failed": TaskStatus.CALL_FAILED,
}

PROGRESS_STATUS_MAP = {
    "ringing": TaskStatus.CALL_RINGING,
    "in-progress": TaskStatus.CALL_IN_PROGRESS,
}

CONFIRMED_GOODBYE = "Great, thank you for confirming. Goodbye."
DECLINED_GOODBYE = "Okay, I understand. Thank you for your time. Goodbye."
TROUBLE_GOODBYE = "I'm sorry, I'm having trouble with this call. I'll end it now. Goodbye."
ERROR_GOODBYE = "I'm sorry, an error occurred. Goodbye."


def result_sms_text(record: TaskRecord, confirmed: bool) -> str:
    """Summary texted to the user once the business has answered."""
    place = record.details.selected_place.name if record.details.selected_place else "The business"
    parsed = record.details.parsed
    service = parsed.service if parsed and parsed.service else "your request"
    when = f" for {parsed.time_constraint}" if parsed and parsed.time_constraint else ""
    if confirmed:
        return f"Errand update: {place} confirmed {service}{when}."
    return f"Errand update: {place} could not confirm {service}{when}."


class CallbackReconciler:
    """Applies telephony callbacks to the task they belong to."""

    def __init__(self, state_machine: TaskStateMachine, llm, telephony):
        self.state_machine = state_machine
        self.llm = llm
        self.telephony = telephony

    async def handle(self, event: CallbackEvent) -> str:
        """Process one callback and return the TwiML acknowledgement."""
        task_id = event.task_id
        record = await self.state_machine.get(task_id)
        if record is None:
            logger.warning("[%s] Callback for unknown task ignored (kind=%s)", task_id, event.kind)
            return empty_twiml()

        if event.call_sid and record.call_sid and event.call_sid != record.call_sid:
            logger.warning(
                "[%s] Callback Call SID %s does not match task call %s, ignored",
                task_id, event.call_sid, record.call_sid,
            )
            return empty_twiml()

        logger.info("[%s] Callback: kind=%s status=%s", task_id, event.kind, event.call_status)

        try:
            if isinstance(event, SpeechEvent):
                return await self._on_speech(record, event)
            if isinstance(event, DigitsEvent):
                return await self._on_digits(record, event)
            if isinstance(event, TerminalStatusEvent):
                return await self._on_terminal_status(record, event)
            if isinstance(event, ProgressStatusEvent):
                return await self._on_progress_status(record, event)
        except Exception as e:
            logger.exception("[%s] Error handling %s callback", task_id, event.kind)
            await self.state_machine.fail(task_id, f"Callback processing error: {e}")
            in_call = isinstance(event, (SpeechEvent, DigitsEvent))
            return goodbye_twiml(ERROR_GOODBYE) if in_call else empty_twiml()

        logger.debug("[%s] Unrecognized callback (CallStatus=%s), nothing to do", task_id, event.call_status)
        return empty_twiml()

    async def _send_result_sms(self, record: TaskRecord, confirmed: bool) -> Optional[str]:
        if not record.callback_phone:
            return None
        result = await run_in_threadpool(
            self.telephony.send_sms, record.callback_phone, result_sms_text(record, confirmed)
        )
        return result.get("status")

    async def _on_speech(self, record: TaskRecord, event: SpeechEvent) -> str:
        intent = record.details.parsed or ParsedIntent()
        business_turn = ConversationTurn(speaker="business", text=event.speech)
        decision: TurnDecision = await self.llm.decide_turn(intent, record.conversation_log, event.speech)

        if decision.kind == "speak":
            await self.state_machine.apply_transition(record.task_id, TaskUpdate(
                status=TaskStatus.CALL_IN_PROGRESS,
                call_sid=event.call_sid,
                append_turns=[business_turn, ConversationTurn(speaker="assistant", text=decision.text)],
            ))
            return gather_twiml(decision.text, self.telephony.callback_url(record.task_id))

        if decision.kind in ("confirm", "decline"):
            confirmed = decision.kind == "confirm"
            closing = CONFIRMED_GOODBYE if confirmed else DECLINED_GOODBYE
            sms_status = await self._send_result_sms(record, confirmed)
            await self.state_machine.apply_transition(record.task_id, TaskUpdate(
                status=TaskStatus.APPOINTMENT_CONFIRMED if confirmed else TaskStatus.APPOINTMENT_DECLINED,
                call_sid=event.call_sid,
                append_turns=[business_turn, ConversationTurn(speaker="assistant", text=closing)],
                call_outcome=CallOutcome(
                    confirmation="confirmed" if confirmed else "declined",
                    speech=event.speech,
                    confidence=event.confidence,
                    sms_status=sms_status,
                ),
            ))
            return goodbye_twiml(closing)

        await self.state_machine.apply_transition(record.task_id, TaskUpdate(
            status=TaskStatus.FAILED,
            call_sid=event.call_sid,
            append_turns=[business_turn],
            call_outcome=CallOutcome(speech=event.speech, confidence=event.confidence),
            error=decision.reason,
        ))
        return goodbye_twiml(TROUBLE_GOODBYE)

    async def _on_digits(self, record: TaskRecord, event: DigitsEvent) -> str:
        if not event.digits:
            await self.state_machine.apply_transition(record.task_id, TaskUpdate(
                status=TaskStatus.APPOINTMENT_FAILED_NO_DTMF,
                call_sid=event.call_sid,
                error="No keypad input received.",
            ))
            return goodbye_twiml(TROUBLE_GOODBYE)

        confirmed = event.digits == "1"
        closing = CONFIRMED_GOODBYE if confirmed else DECLINED_GOODBYE
        sms_status = await self._send_result_sms(record, confirmed)
        await self.state_machine.apply_transition(record.task_id, TaskUpdate(
            status=TaskStatus.APPOINTMENT_CONFIRMED_DTMF if confirmed else TaskStatus.APPOINTMENT_DECLINED_DTMF,
            call_sid=event.call_sid,
            call_outcome=CallOutcome(
                confirmation="confirmed" if confirmed else "declined",
                digits=event.digits,
                sms_status=sms_status,
            ),
        ))
        return goodbye_twiml(closing)

    async def _on_terminal_status(self, record: TaskRecord, event: TerminalStatusEvent) -> str:
        status = TERMINAL_STATUS_MAP[event.call_status]
        error = None
        if status != TaskStatus.CALL_COMPLETED:
            error = f"Call ended with status '{event.call_status}'"
            if event.error_code:
                error += f" (error code {event.error_code})"
        await self.state_machine.apply_transition(record.task_id, TaskUpdate(
            status=status,
            call_sid=event.call_sid,
            call_outcome=CallOutcome(final_status=event.call_status, error_code=event.error_code),
            error=error,
        ))
        return empty_twiml()

    async def _on_progress_status(self, record: TaskRecord, event: ProgressStatusEvent) -> str:
        await self.state_machine.apply_transition(record.task_id, TaskUpdate(
            status=PROGRESS_STATUS_MAP[event.call_status],
            call_sid=event.call_sid,
        ))
        return empty_twiml()
