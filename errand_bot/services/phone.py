"""
Phone number handling.

Two different numbers pass through an errand:

- The user's callback phone, validated on submission with Google's
  phonenumbers library and stored in E.164.
- The business number returned by place search, cleaned with simple
  digit rules right before it is dialled. Place listings come in many
  local formats, so anything the rules cannot turn into ``+`` plus
  10-15 digits stops the flow instead of producing a bad dial.
"""

import logging
import re

import phonenumbers
from phonenumbers.phonenumberutil import NumberParseException

from .. import config
from ..errors import ValidationError

logger = logging.getLogger(__name__)

_DIAL_STRIP_RE = re.compile(r"[^\d+]")
_DIAL_FINAL_RE = re.compile(r"^\+\d{10,15}$")

UNFORMATTABLE_MESSAGE = "Cannot reliably format phone number"
INVALID_FORMAT_MESSAGE = "Phone number format is invalid"


def normalize_callback_phone(phone: str, region: str = None) -> str:
    """
    Validate the user's callback phone and return it in E.164.

    Numbers without a leading "+" are read in ``region``
    (DEFAULT_PHONE_REGION unless given).

    Raises:
        ValidationError: the number cannot be parsed or has an impossible length
    """
    region = region or config.DEFAULT_PHONE_REGION
    raw = (phone or "").strip()
    if not raw:
        raise ValidationError("Request and user phone number are required.")

    try:
        parsed = phonenumbers.parse(raw, None if raw.startswith("+") else region)
    except NumberParseException as e:
        raise ValidationError(f"Invalid user phone number format: {e}") from e

    if not phonenumbers.is_possible_number(parsed):
        raise ValidationError("Invalid user phone number format.")

    return phonenumbers.format_number(parsed, phonenumbers.PhoneNumberFormat.E164)


def clean_dial_number(phone: str, country_code: str = None) -> str:
    """
    Turn a business phone number into a dialable ``+`` number.

    Examples:
        "(415) 555-0100"    -> "+14155550100"
        "4155550100"        -> "+14155550100"
        "1 415 555 0100"    -> "+14155550100"
        "+44 20 7946 0958"  -> "+442079460958"

    Raises:
        ValidationError: the digits match no known shape, or the result is
            not "+" followed by 10-15 digits
    """
    country_code = country_code or config.DEFAULT_COUNTRY_CODE
    cleaned = _DIAL_STRIP_RE.sub("", phone or "")

    if not cleaned.startswith("+"):
        if len(cleaned) == 11 and cleaned.startswith("1"):
            cleaned = "+" + cleaned
        elif len(cleaned) == 10:
            cleaned = f"+{country_code}{cleaned}"
        else:
            raise ValidationError(f"{UNFORMATTABLE_MESSAGE}: {phone}")

    if not _DIAL_FINAL_RE.match(cleaned):
        raise ValidationError(f"{INVALID_FORMAT_MESSAGE}: {cleaned}")

    return cleaned
