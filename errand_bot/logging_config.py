"""
Logging for the errand service.

Messages about a task are prefixed with its id, ``[<task_id>] ...``, so one
errand can be followed from submission through the Twilio callbacks with a
plain grep. Callback phones and dialed numbers go through ``mask_phone``
before they are logged at INFO.

Usage:
    from errand_bot.logging_config import setup_logging
    setup_logging()  # once, from main.py

Environment variables:
    LOG_LEVEL: DEBUG, INFO, WARNING, ERROR or CRITICAL (default: INFO).
        DEBUG also lets the collaborator SDKs below log their requests.
"""
import logging
import os
import sys

LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# OpenAI, Twilio, Google Maps (via urllib3) and SQLAlchemy
QUIET_LOGGERS = (
    "openai",
    "httpx",
    "httpcore",
    "twilio",
    "urllib3",
    "sqlalchemy.engine",
)


def setup_logging(level: str = None) -> None:
    """
    Send errand_bot logs to stdout at ``level``.

    Args:
        level: One of LEVELS. Falls back to LOG_LEVEL, then INFO; an
               unknown name also means INFO.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
    if level not in LEVELS:
        level = "INFO"

    numeric_level = getattr(logging, level)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
    )
    logging.getLogger("errand_bot").setLevel(numeric_level)

    sdk_level = logging.DEBUG if level == "DEBUG" else logging.WARNING
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(sdk_level)

    logging.getLogger(__name__).debug("Logging configured at %s level", level)


def mask_phone(phone: str) -> str:
    """Mask a phone number for INFO-level logs, keeping the last four digits."""
    if not phone:
        return "unknown"
    return f"...{phone[-4:]}" if len(phone) >= 4 else phone
