"""
Schemas Package for Errand Bot
==============================

Pydantic models used for the task record, API request validation, response
serialization and decoding of telephony callbacks.

Schema Organization:
--------------------
- **task.py**: Task record, status enumeration, partial updates, push events
- **errands.py**: Errand submission request and responses
- **auth.py**: Register/login/me bodies
- **callbacks.py**: Tagged union of telephony callback events

Usage:
------
    from errand_bot.schemas import TaskRecord, TaskUpdate, TaskStatus
"""

from .task import (
    CamelModel,
    TaskStatus,
    STATUS_RANK,
    TERMINAL_STATUSES,
    is_terminal,
    is_forward_transition,
    LocationHint,
    ParsedIntent,
    PlaceCandidate,
    TaskDetails,
    ConversationTurn,
    CallOutcome,
    HistoryEntry,
    TaskRecord,
    TaskUpdate,
    TaskUpdateEvent,
    utc_now,
)
from .errands import ErrandRequest, ErrandAccepted, ErrandCompleted
from .auth import Credentials, UserOut, AuthResponse, MeResponse
from .callbacks import (
    CallbackEvent,
    SpeechEvent,
    DigitsEvent,
    TerminalStatusEvent,
    ProgressStatusEvent,
    UnrecognizedEvent,
    decode_callback,
)

__all__ = [
    "CamelModel",
    "TaskStatus",
    "STATUS_RANK",
    "TERMINAL_STATUSES",
    "is_terminal",
    "is_forward_transition",
    "LocationHint",
    "ParsedIntent",
    "PlaceCandidate",
    "TaskDetails",
    "ConversationTurn",
    "CallOutcome",
    "HistoryEntry",
    "TaskRecord",
    "TaskUpdate",
    "TaskUpdateEvent",
    "utc_now",
    "ErrandRequest",
    "ErrandAccepted",
    "ErrandCompleted",
    "Credentials",
    "UserOut",
    "AuthResponse",
    "MeResponse",
    "CallbackEvent",
    "SpeechEvent",
    "DigitsEvent",
    "TerminalStatusEvent",
    "ProgressStatusEvent",
    "UnrecognizedEvent",
    "decode_callback",
]
