"""
Telephony service for errand calls and result texts.

Places outbound calls and sends SMS via Twilio when configured. Without
credentials, calls fail with a ConfigurationError (a call cannot be faked)
while SMS falls back to logging in mock mode.

Call flow:
- The call is created with inline TwiML: the opening script is spoken inside
  a speech <Gather> whose action is the errand callback URL. If nothing is
  heard, a goodbye line is spoken and the call hangs up.
- Status callbacks for completed/busy/no-answer/canceled/failed are posted to
  the same URL, so one route sees every event for a task.
- Each speech callback is answered with another Gather (keep talking) or a
  Say + Hangup (done).

Environment variables:
- TWILIO_ACCOUNT_SID: Twilio Account SID (starts with AC)
- TWILIO_AUTH_TOKEN: Twilio Auth Token
- TWILIO_PHONE_NUMBER: Twilio phone number to call and text from
- BASE_URL: Public URL Twilio posts callbacks to
"""

import logging
from typing import Dict, Optional
from urllib.parse import quote

from twilio.base.exceptions import TwilioException
from twilio.request_validator import RequestValidator
from twilio.twiml.voice_response import Gather, VoiceResponse

from . import config
from .errors import ConfigurationError, UpstreamServiceError
from .logging_config import mask_phone

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/errands/provider-callback"

VOICE = "alice"
LANGUAGE = "en-US"

SPEECH_HINTS = (
    "yes, no, okay, confirm, cancel, appointment, schedule, time, date, "
    "Monday, Tuesday, Wednesday, Thursday, Friday, Saturday, Sunday, "
    "AM, PM, o'clock, one, two, three, four, five, six, seven, eight, nine, zero"
)

NO_RESPONSE_GOODBYE = "I'm sorry, I didn't catch a response. I will have to end the call. Goodbye."

STATUS_CALLBACK_EVENTS = ["initiated", "ringing", "answered", "completed"]


# =============================================================================
# TwiML builders
# =============================================================================

def gather_twiml(text: str, action_url: str) -> str:
    """Speak ``text`` and listen for a spoken reply posted to ``action_url``."""
    response = VoiceResponse()
    gather = Gather(
        input="speech",
        action=action_url,
        method="POST",
        speech_timeout="auto",
        language=LANGUAGE,
        profanity_filter="true",
        hints=SPEECH_HINTS,
    )
    gather.say(text, voice=VOICE, language=LANGUAGE)
    response.append(gather)
    response.say(NO_RESPONSE_GOODBYE, voice=VOICE, language=LANGUAGE)
    response.hangup()
    return str(response)


def goodbye_twiml(text: str) -> str:
    """Speak a closing line and hang up."""
    response = VoiceResponse()
    response.say(text, voice=VOICE, language=LANGUAGE)
    response.hangup()
    return str(response)


def empty_twiml() -> str:
    """Acknowledge a callback without instructions."""
    return str(VoiceResponse())


# =============================================================================
# Twilio client wrapper
# =============================================================================

class TwilioTelephony:
    """Outbound calls, SMS and callback signature checks."""

    def __init__(
        self,
        account_sid: Optional[str] = None,
        auth_token: Optional[str] = None,
        from_number: Optional[str] = None,
        base_url: Optional[str] = None,
        client=None,
    ):
        self.account_sid = account_sid if account_sid is not None else config.TWILIO_ACCOUNT_SID
        self.auth_token = auth_token if auth_token is not None else config.TWILIO_AUTH_TOKEN
        self.from_number = from_number if from_number is not None else config.TWILIO_PHONE_NUMBER
        self.base_url = (base_url if base_url is not None else config.BASE_URL).rstrip("/")
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or all([self.account_sid, self.auth_token, self.from_number])

    @property
    def client(self):
        if self._client is None:
            if not self.is_configured:
                raise ConfigurationError("Twilio service is currently unavailable. Please check server configuration.")
            from twilio.rest import Client

            self._client = Client(self.account_sid, self.auth_token)
        return self._client

    def callback_url(self, task_id: str) -> str:
        if not self.base_url:
            raise ConfigurationError("BASE_URL not configured; Twilio callbacks will fail.")
        return f"{self.base_url}{CALLBACK_PATH}?taskId={quote(task_id, safe='')}"

    def place_call(self, to_number: str, script: str, task_id: str) -> str:
        """
        Start the outbound call for a task.

        Returns:
            The Twilio Call SID

        Raises:
            ConfigurationError: Twilio or BASE_URL not configured
            UpstreamServiceError: Twilio rejected the call
        """
        client = self.client
        url = self.callback_url(task_id)
        twiml = gather_twiml(script, url)

        logger.info("[%s] Placing call to %s", task_id, mask_phone(to_number))
        try:
            call = client.calls.create(
                twiml=twiml,
                to=to_number,
                from_=self.from_number,
                status_callback=url,
                status_callback_event=STATUS_CALLBACK_EVENTS,
                status_callback_method="POST",
            )
        except TwilioException as e:
            logger.error("[%s] Twilio call failed: %s", task_id, e)
            raise UpstreamServiceError(f"Failed to initiate call: {e}") from e

        logger.info("[%s] Call initiated (SID: %s)", task_id, call.sid)
        return call.sid

    def send_sms(self, to_number: str, body: str) -> Dict:
        """
        Text the user. Never raises; the result says what happened.

        Returns:
            dict with "status" of "sent", "mock" or "failed"
        """
        if not self.is_configured:
            logger.info("MOCK SMS to %s: %s", mask_phone(to_number), body)
            return {"status": "mock", "phone": to_number, "message": body}

        try:
            message = self.client.messages.create(body=body, from_=self.from_number, to=to_number)
        except TwilioException as e:
            logger.error("Failed to send SMS to %s: %s", mask_phone(to_number), e)
            return {"status": "failed", "phone": to_number, "error": str(e)}

        logger.info("SMS sent to %s (SID: %s)", mask_phone(to_number), message.sid)
        return {"status": "sent", "phone": to_number, "message_sid": message.sid}

    def validate_signature(self, url: str, params: Dict[str, str], signature: Optional[str]) -> bool:
        """Check an X-Twilio-Signature header against the auth token."""
        if not self.auth_token:
            return True
        if not signature:
            return False
        return RequestValidator(self.auth_token).validate(url, params, signature)
