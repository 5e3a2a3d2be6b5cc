"""
Task Schemas for Errand Bot
===========================

Pydantic models for the errand task record: the single document that every
part of the service reads and that only the state machine writes.

Record Layout:
--------------
- task_id / request / callback_phone: identity and user input, set at creation
- status: one of TaskStatus, moved forward by apply_transition
- details: closed structure with one optional field per orchestration phase
  (parsed intent, candidate places, selected place, call script, cleaned
  outbound number). Fields are filled in, never removed.
- call_sid: telephony session id, set when the call is placed
- conversation_log: append-only spoken turns of an interactive call
- call_outcome: what the call produced (final provider status, keypad or
  speech confirmation, provider error code, result SMS delivery)
- history: append-only audit trail, one entry per distinct transition
- error: last recorded error, never cleared implicitly
- last_updated: refreshed by every transition

Wire Format:
------------
Records are sent to browsers and returned by the status endpoint in camelCase
(``taskId``, ``callbackPhone``, ``lastUpdated`` ...). Python code uses the
snake_case field names; ``populate_by_name`` lets either form be parsed.

Status Ordering:
----------------
Each status belongs to a phase. A transition may stay in the same phase or
move to a later one; leaving a terminal status is never allowed, and
``failed`` can be entered from any non-terminal status. See
``is_forward_transition``.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CamelModel(BaseModel):
    """Base model serialised with camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskStatus(str, Enum):
    """Every state an errand task can be in."""
    PROCESSING = "processing"
    PARSING_REQUEST = "parsing_request"
    REQUEST_PARSED = "request_parsed"
    FINDING_PLACES = "finding_places"
    PLACES_FOUND = "places_found"
    PLACE_SELECTED = "place_selected"
    GENERATING_SCRIPT = "generating_script"
    INITIATING_CALL = "initiating_call"
    CALL_INITIATED = "call_initiated"
    CALL_RINGING = "call_ringing"
    CALL_IN_PROGRESS = "call_in_progress"
    APPOINTMENT_CONFIRMED = "appointment_confirmed"
    APPOINTMENT_DECLINED = "appointment_declined"
    APPOINTMENT_CONFIRMED_DTMF = "appointment_confirmed_dtmf"
    APPOINTMENT_DECLINED_DTMF = "appointment_declined_dtmf"
    APPOINTMENT_FAILED_NO_DTMF = "appointment_failed_no_dtmf"
    CALL_COMPLETED = "call_completed"
    CALL_FAILED_BUSY = "call_failed_busy"
    CALL_FAILED_NO_ANSWER = "call_failed_no_answer"
    CALL_CANCELED = "call_canceled"
    CALL_FAILED = "call_failed"
    COMPLETED = "completed"
    FAILED = "failed"


# Phase rank per status. Equal rank means "same phase".
_TERMINAL_RANK = 100

STATUS_RANK: Dict[TaskStatus, int] = {
    TaskStatus.PROCESSING: 0,
    TaskStatus.PARSING_REQUEST: 1,
    TaskStatus.REQUEST_PARSED: 2,
    TaskStatus.FINDING_PLACES: 3,
    TaskStatus.PLACES_FOUND: 4,
    TaskStatus.PLACE_SELECTED: 5,
    TaskStatus.GENERATING_SCRIPT: 6,
    TaskStatus.INITIATING_CALL: 7,
    TaskStatus.CALL_INITIATED: 8,
    TaskStatus.CALL_RINGING: 9,
    TaskStatus.CALL_IN_PROGRESS: 10,
}

TERMINAL_STATUSES = frozenset({
    TaskStatus.APPOINTMENT_CONFIRMED,
    TaskStatus.APPOINTMENT_DECLINED,
    TaskStatus.APPOINTMENT_CONFIRMED_DTMF,
    TaskStatus.APPOINTMENT_DECLINED_DTMF,
    TaskStatus.APPOINTMENT_FAILED_NO_DTMF,
    TaskStatus.CALL_COMPLETED,
    TaskStatus.CALL_FAILED_BUSY,
    TaskStatus.CALL_FAILED_NO_ANSWER,
    TaskStatus.CALL_CANCELED,
    TaskStatus.CALL_FAILED,
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
})

for _status in TERMINAL_STATUSES:
    STATUS_RANK[_status] = _TERMINAL_RANK


def is_terminal(status: TaskStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_forward_transition(current: TaskStatus, new: TaskStatus) -> bool:
    """
    Decide whether moving from ``current`` to ``new`` is allowed.

    Re-applying the current status is always allowed so duplicate provider
    callbacks are harmless. Otherwise terminal statuses are final, ``failed``
    is reachable from anything else, and the phase rank may not decrease.
    """
    if current == new:
        return True
    if is_terminal(current):
        return False
    if new == TaskStatus.FAILED:
        return True
    return STATUS_RANK[new] >= STATUS_RANK[current]


class LocationHint(CamelModel):
    lat: float
    lng: float


class ParsedIntent(CamelModel):
    """Structured reading of the user's free-text request."""
    service: Optional[str] = Field(default=None, description="Kind of business or service wanted, e.g. 'dentist appointment', 'plumber'")
    action: Optional[str] = Field(default=None, description="What to do, e.g. 'book', 'check availability', 'find'")
    time_constraint: Optional[str] = Field(default=None, description="When, if the user said")
    location_hint: Optional[str] = Field(default=None, description="Where, if the user said")


class PlaceCandidate(CamelModel):
    """A business returned by place search, with contact details."""
    name: str
    address: Optional[str] = None
    phone: Optional[str] = None
    place_id: Optional[str] = None
    rating: Optional[float] = None
    website: Optional[str] = None

    @property
    def has_phone(self) -> bool:
        return bool(self.phone and self.phone.strip())


class TaskDetails(CamelModel):
    """
    Accumulated results of the orchestration phases.

    Used both as the stored value and as a partial update; in an update,
    only the fields that are set replace the stored ones.
    """
    parsed: Optional[ParsedIntent] = None
    potential_places: Optional[List[PlaceCandidate]] = None
    selected_place: Optional[PlaceCandidate] = None
    call_script: Optional[str] = None
    cleaned_phone_number: Optional[str] = None


class ConversationTurn(CamelModel):
    speaker: Literal["assistant", "business"]
    text: str
    timestamp: datetime = Field(default_factory=utc_now)


class CallOutcome(CamelModel):
    final_status: Optional[str] = None
    confirmation: Optional[str] = None  # "confirmed" / "declined"
    digits: Optional[str] = None
    speech: Optional[str] = None
    confidence: Optional[float] = None
    error_code: Optional[str] = None
    sms_status: Optional[str] = None  # "sent" / "mock" / "failed"


class HistoryEntry(CamelModel):
    step: TaskStatus
    timestamp: datetime = Field(default_factory=utc_now)
    details: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    def same_as(self, other: "HistoryEntry") -> bool:
        """Compare everything except the timestamp."""
        return (
            self.step == other.step
            and self.details == other.details
            and self.error == other.error
        )


class TaskRecord(CamelModel):
    """The authoritative record of one errand task."""
    task_id: str
    request: Optional[str] = None
    callback_phone: Optional[str] = None
    status: TaskStatus = TaskStatus.PROCESSING
    location_hint: Optional[LocationHint] = None
    details: TaskDetails = Field(default_factory=TaskDetails)
    call_sid: Optional[str] = None
    conversation_log: List[ConversationTurn] = Field(default_factory=list)
    call_outcome: Optional[CallOutcome] = None
    history: List[HistoryEntry] = Field(default_factory=list)
    error: Optional[str] = None
    user_id: Optional[int] = None
    last_updated: Optional[datetime] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class TaskUpdate(BaseModel):
    """
    Partial update handed to the state machine.

    Every field is optional; unset fields leave the record untouched.
    ``append_turns`` is appended to the conversation log rather than
    replacing it.
    """
    status: Optional[TaskStatus] = None
    request: Optional[str] = None
    callback_phone: Optional[str] = None
    location_hint: Optional[LocationHint] = None
    user_id: Optional[int] = None
    details: Optional[TaskDetails] = None
    call_sid: Optional[str] = None
    call_outcome: Optional[CallOutcome] = None
    append_turns: List[ConversationTurn] = Field(default_factory=list)
    error: Optional[str] = None

    def details_delta(self) -> Optional[Dict[str, Any]]:
        """The set detail fields, as they appear in the history entry."""
        if self.details is None:
            return None
        delta = self.details.model_dump(mode="json", by_alias=True, exclude_none=True)
        return delta or None


class TaskUpdateEvent(CamelModel):
    """Payload pushed to every subscriber of a task's topic."""
    task_id: str
    status: TaskStatus
    message: str
    error: Optional[str] = None
    task_data: Dict[str, Any]

    @classmethod
    def from_record(cls, record: TaskRecord) -> "TaskUpdateEvent":
        return cls(
            task_id=record.task_id,
            status=record.status,
            message=f"Update: {record.status.value}",
            error=record.error,
            task_data=record.to_wire(),
        )
