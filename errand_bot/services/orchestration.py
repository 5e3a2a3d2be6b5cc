"""
Errand Orchestration Flow
=========================

Drives one errand from submission to either a placed call or a completed
place search. Every step commits one transition through the state machine,
so subscribers follow the task live, and the HTTP caller gets the outcome
of the last step.

Pipeline:
---------
    processing
    -> parsing_request -> request_parsed            (LLM intent parsing)
    -> finding_places -> places_found               (place search)
    -> place_selected                               (first candidate with a phone)
    -> completed                                    (find-only actions)
    or
    -> generating_script -> initiating_call         (dial number cleaned first)
    -> call_initiated                               (Twilio call placed)

Later progress (ringing, speech turns, outcome) arrives through telephony
callbacks, see services/callbacks.py.

Failure Handling:
-----------------
Any step failure commits one ``failed`` transition carrying the error
message and then re-raises. ErrandError subclasses carry their HTTP status
(ValidationError/NotFoundCondition are client errors); anything unexpected
is re-raised as a 500 ErrandError with the same message the task recorded.
The flow never retries.

Blocking Collaborators:
-----------------------
Place search (requests) and Twilio (twilio-python) are synchronous; they
run in Starlette's threadpool so other requests keep being served.
"""

import logging
import uuid
from typing import Dict, Optional, Union

from starlette.concurrency import run_in_threadpool

from .. import config
from ..errors import ErrandError, NotFoundCondition, UpstreamServiceError, ValidationError
from ..llm_client import UNDERSTAND_FAILURE_MESSAGE, fallback_call_script
from ..logging_config import mask_phone
from ..places_service import build_search_query
from ..schemas import (
    ConversationTurn,
    ErrandAccepted,
    ErrandCompleted,
    ErrandRequest,
    ParsedIntent,
    TaskDetails,
    TaskStatus,
    TaskUpdate,
)
from .phone import clean_dial_number, normalize_callback_phone
from .state_machine import TaskStateMachine

logger = logging.getLogger(__name__)

INTERACTIVE_ACTION_KEYWORDS = ("book", "check", "schedule")


def new_task_id() -> str:
    return str(uuid.uuid4())


def needs_interactive_call(intent: ParsedIntent) -> bool:
    """Booking, checking and scheduling need someone to talk to the business."""
    action = (intent.action or "").lower()
    return any(keyword in action for keyword in INTERACTIVE_ACTION_KEYWORDS)


class ErrandFlow:
    """Sequences parser, place search and telephony for one errand."""

    def __init__(
        self,
        state_machine: TaskStateMachine,
        llm,
        places,
        telephony,
        default_location: Optional[Dict[str, float]] = None,
    ):
        self.state_machine = state_machine
        self.llm = llm
        self.places = places
        self.telephony = telephony
        self.default_location = default_location or config.DEFAULT_LOCATION

    async def run(
        self,
        request: ErrandRequest,
        user_id: Optional[int] = None,
    ) -> Union[ErrandAccepted, ErrandCompleted]:
        """
        Create a task for ``request`` and drive it as far as this request can.

        Returns:
            ErrandAccepted when a call was placed, ErrandCompleted otherwise

        Raises:
            ErrandError: the step that failed, with ``task_id`` set once a
                task exists
        """
        callback_phone = normalize_callback_phone(request.user_phone_number)

        task_id = new_task_id()
        logger.info("[%s] New errand (user %s, SMS to %s)", task_id, user_id, mask_phone(callback_phone))

        await self.state_machine.apply_transition(task_id, TaskUpdate(
            status=TaskStatus.PROCESSING,
            request=request.request,
            callback_phone=callback_phone,
            location_hint=request.location,
            user_id=user_id,
        ))

        try:
            return await self._drive(task_id, request)
        except ErrandError as e:
            logger.warning("[%s] Errand failed: %s", task_id, e.message)
            await self.state_machine.fail(task_id, e.message)
            e.task_id = task_id
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error processing errand", task_id)
            error = ErrandError(f"Unexpected error processing errand: {e}")
            await self.state_machine.fail(task_id, error.message)
            error.task_id = task_id
            raise error from e

    async def _transition(self, task_id: str, status: TaskStatus, **fields):
        return await self.state_machine.apply_transition(task_id, TaskUpdate(status=status, **fields))

    async def _drive(self, task_id: str, request: ErrandRequest) -> Union[ErrandAccepted, ErrandCompleted]:
        # Step 1: Parse the request
        await self._transition(task_id, TaskStatus.PARSING_REQUEST)
        intent = await self.llm.parse_errand_request(request.request)
        if not intent.service or not intent.action:
            raise ValidationError(UNDERSTAND_FAILURE_MESSAGE)
        await self._transition(task_id, TaskStatus.REQUEST_PARSED, details=TaskDetails(parsed=intent))

        # Step 2: Find places
        record = await self._transition(task_id, TaskStatus.FINDING_PLACES)
        query = build_search_query(intent.service, intent.location_hint)
        location = request.location or record.location_hint
        search_location = location.model_dump() if location is not None else self.default_location
        places = await run_in_threadpool(self.places.find_places, query, search_location)
        if not places:
            raise NotFoundCondition(f"Could not find any '{intent.service}' nearby.")
        await self._transition(task_id, TaskStatus.PLACES_FOUND, details=TaskDetails(potential_places=places))

        # Step 3: Select the first place with a phone number
        selected = next((place for place in places if place.has_phone), None)
        if selected is None:
            raise NotFoundCondition(
                f"Found places for {intent.service}, but none had a usable phone number listed."
            )
        await self._transition(task_id, TaskStatus.PLACE_SELECTED, details=TaskDetails(selected_place=selected))

        if not needs_interactive_call(intent):
            logger.info("[%s] Action '%s' needs no call", task_id, intent.action)
            await self._transition(task_id, TaskStatus.COMPLETED)
            return ErrandCompleted(
                message=f"Task completed for '{intent.service}'. (No interactive call needed)",
                task_id=task_id,
                places=places if "find" in intent.action.lower() else [],
            )

        # Step 4: Clean the number before anything is said or dialled
        dial_number = clean_dial_number(selected.phone)

        await self._transition(task_id, TaskStatus.GENERATING_SCRIPT)
        try:
            script = await self.llm.generate_call_script(intent, selected.name)
        except UpstreamServiceError as e:
            logger.warning("[%s] Script generation failed, using fallback: %s", task_id, e.message)
            script = fallback_call_script(intent)

        await self._transition(
            task_id,
            TaskStatus.INITIATING_CALL,
            details=TaskDetails(call_script=script, cleaned_phone_number=dial_number),
            append_turns=[ConversationTurn(speaker="assistant", text=script)],
        )

        # Step 5: Place the call
        call_sid = await run_in_threadpool(self.telephony.place_call, dial_number, script, task_id)
        await self._transition(task_id, TaskStatus.CALL_INITIATED, call_sid=call_sid)

        return ErrandAccepted(
            message=f"Okay, initiating AI call to {selected.name} ({dial_number})... Awaiting real-time updates.",
            task_id=task_id,
            place_name=selected.name,
        )
