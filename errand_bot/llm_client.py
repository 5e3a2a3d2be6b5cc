"""
Language model collaborator for errands.

Three jobs, all through OpenAI:

- parse_errand_request: free text -> ParsedIntent (structured output via instructor)
- generate_call_script: the opening sentence spoken when the business answers
- decide_turn: given what the business just said, speak again, or end the
  call as confirmed or declined

The clients are built on first use so the service can start without an API
key; the first call then fails with a ConfigurationError.
"""

import logging
import re
from typing import List, Literal, Optional

import instructor
from instructor.exceptions import InstructorRetryException
from openai import AsyncOpenAI, OpenAIError
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from . import config
from .errors import ConfigurationError, UpstreamServiceError, ValidationError
from .schemas import ConversationTurn, ParsedIntent

logger = logging.getLogger(__name__)

UNDERSTAND_FAILURE_MESSAGE = "Could not reliably understand the required service or action."

MAX_TURN_LENGTH = 250

_QUOTES_RE = re.compile(r"^[\"'“‘]|[\"'”’]$")
_SPEAKER_PREFIX_RE = re.compile(r"^ASSISTANT:\s*", re.IGNORECASE)

PARSE_PROMPT = """You help an errand assistant that phones businesses on a user's behalf.
Extract from the user's request:
- service: the kind of business or service (e.g. "dentist appointment", "plumber")
- action: what the user wants done (e.g. "book", "check availability", "find")
- time_constraint: any date or time mentioned, or null
- location_hint: any place mentioned (e.g. "downtown"), or null
"""

SCRIPT_PROMPT = """You are an automated assistant about to speak on a phone call to "{place_name}".
You are calling for a user to {action} {service}.{time_line}
Reply with ONLY the single opening sentence to say, 15 to 25 words, stating the purpose clearly."""

TURN_PROMPT = """You are an automated assistant on a phone call with a business.
Goal: {goal}

Conversation so far:
{history}

Latest from the business:
BUSINESS: {speech}

Decide your next single action and reply with ONLY one of:
- CONFIRMED if the business clearly confirmed the booking
- DECLINED if the business clearly cannot or will not do it
- the exact single sentence to say next (polite, short, one question at most)"""


class TurnDecision(BaseModel):
    """What to do after the business speaks."""
    kind: Literal["speak", "confirm", "decline", "fail"]
    text: Optional[str] = None
    reason: Optional[str] = None


def fallback_call_script(intent: ParsedIntent) -> str:
    """Opening sentence used when script generation is unavailable."""
    action = intent.action or "inquire about"
    service = intent.service or "services"
    time_part = f" regarding {intent.time_constraint}" if intent.time_constraint else ""
    return f"Hello, this is an automated assistant calling for a user to {action} {service}{time_part}."


def interpret_turn_reply(reply: str) -> TurnDecision:
    """Classify the model's raw reply to a conversation turn."""
    reply = (reply or "").strip()
    upper = reply.upper()
    if upper == "CONFIRMED":
        return TurnDecision(kind="confirm", reason="AI confirmed appointment.")
    if upper == "DECLINED":
        return TurnDecision(kind="decline", reason="AI determined appointment declined/unavailable.")
    if not reply or len(reply) >= MAX_TURN_LENGTH:
        return TurnDecision(kind="fail", reason="AI processing failed or response unclear.")

    cleaned = _SPEAKER_PREFIX_RE.sub("", _QUOTES_RE.sub("", reply)).strip()
    if not cleaned:
        return TurnDecision(kind="fail", reason="AI processing error (empty response).")
    return TurnDecision(kind="speak", text=cleaned)


def _format_history(turns: List[ConversationTurn]) -> str:
    lines = []
    for turn in turns:
        speaker = "ASSISTANT" if turn.speaker == "assistant" else "BUSINESS"
        lines.append(f"{speaker}: {turn.text}")
    return "\n".join(lines) or "(nothing yet)"


class LLMClient:
    """OpenAI-backed intent parser, script writer and turn decider."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
        openai_client: Optional[AsyncOpenAI] = None,
        instructor_client=None,
    ):
        self.api_key = api_key if api_key is not None else config.OPENAI_API_KEY
        self.model = model or config.OPENAI_MODEL
        self.timeout = timeout or config.OPENAI_TIMEOUT_SECONDS
        self._openai = openai_client
        self._instructor = instructor_client

    @property
    def openai(self) -> AsyncOpenAI:
        if self._openai is None:
            if not self.api_key:
                raise ConfigurationError("OPENAI_API_KEY is not set")
            self._openai = AsyncOpenAI(api_key=self.api_key, timeout=self.timeout)
        return self._openai

    @property
    def instructor(self):
        if self._instructor is None:
            self._instructor = instructor.from_openai(self.openai)
        return self._instructor

    async def _complete(self, prompt: str, temperature: float = 0.6) -> str:
        response = await self.openai.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=temperature,
        )
        return (response.choices[0].message.content or "").strip()

    async def parse_errand_request(self, text: str) -> ParsedIntent:
        """
        Turn a free-text errand into a ParsedIntent.

        Raises:
            ValidationError: the model could not find both a service and an action
            UpstreamServiceError: the OpenAI call failed
        """
        if not text or not text.strip():
            raise ValidationError("Invalid input text for parsing.")

        try:
            intent = await self.instructor.chat.completions.create(
                model=self.model,
                response_model=ParsedIntent,
                max_retries=1,
                messages=[
                    {"role": "system", "content": PARSE_PROMPT},
                    {"role": "user", "content": text},
                ],
            )
        except (OpenAIError, InstructorRetryException, PydanticValidationError) as e:
            logger.error("Intent parsing failed: %s", e)
            raise UpstreamServiceError(f"AI request failed during parsing: {e}") from e

        if not intent.service or not intent.action:
            raise ValidationError(UNDERSTAND_FAILURE_MESSAGE)

        logger.debug("Parsed intent: %s", intent.model_dump())
        return intent

    async def generate_call_script(self, intent: ParsedIntent, place_name: str) -> str:
        """
        Write the opening sentence for the call.

        Raises:
            UpstreamServiceError: the call failed or returned nothing
        """
        time_line = f" The user asked for around: {intent.time_constraint}." if intent.time_constraint else ""
        prompt = SCRIPT_PROMPT.format(
            place_name=place_name,
            action=intent.action or "inquire about",
            service=intent.service or "their services",
            time_line=time_line,
        )
        try:
            script = _QUOTES_RE.sub("", await self._complete(prompt)).strip()
        except OpenAIError as e:
            raise UpstreamServiceError(f"AI script generation failed: {e}") from e
        if not script:
            raise UpstreamServiceError("Empty opening script generated.")
        return script

    async def decide_turn(
        self,
        intent: ParsedIntent,
        conversation: List[ConversationTurn],
        speech: str,
    ) -> TurnDecision:
        """
        Decide how to answer what the business just said.

        Raises:
            UpstreamServiceError: the OpenAI call failed
        """
        when = f"for around {intent.time_constraint}" if intent.time_constraint else "at a suitable time"
        goal = f"successfully {intent.action or 'book'} a {intent.service or 'service'} {when}."
        prompt = TURN_PROMPT.format(goal=goal, history=_format_history(conversation), speech=speech)

        try:
            reply = await self._complete(prompt)
        except OpenAIError as e:
            raise UpstreamServiceError(f"AI conversation processing failed: {e}") from e

        decision = interpret_turn_reply(reply)
        if decision.kind == "fail":
            logger.warning("Unusable turn reply from model: %r", reply)
        return decision
