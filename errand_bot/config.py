"""
Configuration Module for Errand Bot
===================================

This module centralizes all configuration settings, environment variables, and
constants used throughout the Errand Bot service. Every collaborator (database,
language model, maps, telephony) reads its credentials from here so there is a
single place to see what the service can be configured with.

Configuration Categories:
-------------------------
- **Persistence**: Optional durable database. Without DATABASE_URL the service
  keeps task records in process memory only.

- **Language Model**: OpenAI credentials and model used for intent parsing,
  call-script generation and conversation turns.

- **Places**: Google Maps Places API key and search tuning.

- **Telephony**: Twilio credentials, the number calls are placed from, and the
  public BASE_URL Twilio posts callbacks to.

- **Auth**: JWT signing secret and token lifetime.

- **HTTP**: CORS origins, rate limiting and input limits.

Environment Variables:
----------------------
- DATABASE_URL: SQLAlchemy URL (optional)
- OPENAI_API_KEY / OPENAI_MODEL / OPENAI_TIMEOUT_SECONDS
- GOOGLE_MAPS_API_KEY / PLACES_SEARCH_RADIUS_METERS / PLACES_MAX_DETAILS
- TWILIO_ACCOUNT_SID / TWILIO_AUTH_TOKEN / TWILIO_PHONE_NUMBER / BASE_URL
- TWILIO_VALIDATE_SIGNATURE: Check X-Twilio-Signature on callbacks (default: "true")
- DEFAULT_COUNTRY_CODE: Country code assumed for 10-digit numbers (default: "1")
- JWT_SECRET / JWT_EXPIRE_MINUTES
- CORS_ORIGINS / RATE_LIMIT_ERRANDS / RATE_LIMIT_ENABLED / MAX_REQUEST_LENGTH

Usage:
------
    from errand_bot import config

    if config.DATABASE_URL:
        ...
"""

import os
from typing import Dict, List

from dotenv import load_dotenv

load_dotenv()


# =============================================================================
# Persistence Configuration
# =============================================================================
# When unset, task records live only in the in-process memory backend.

DATABASE_URL: str = os.getenv("DATABASE_URL", "")


# =============================================================================
# Language Model Configuration
# =============================================================================

OPENAI_API_KEY: str = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL: str = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
OPENAI_TIMEOUT_SECONDS: float = float(os.getenv("OPENAI_TIMEOUT_SECONDS", "20"))


# =============================================================================
# Places Configuration
# =============================================================================

GOOGLE_MAPS_API_KEY: str = os.getenv("GOOGLE_MAPS_API_KEY", "")

# Radius (meters) used to bias text search around the request location
PLACES_SEARCH_RADIUS_METERS: int = int(os.getenv("PLACES_SEARCH_RADIUS_METERS", "5000"))

# Place Details lookups are billed per call, so only the top results are detailed
PLACES_MAX_DETAILS: int = int(os.getenv("PLACES_MAX_DETAILS", "5"))
PLACES_TIMEOUT_SECONDS: float = float(os.getenv("PLACES_TIMEOUT_SECONDS", "5"))

# Search location used when neither the request nor the task carries one
DEFAULT_LOCATION: Dict[str, float] = {
    "lat": float(os.getenv("DEFAULT_LOCATION_LAT", "40.7128")),
    "lng": float(os.getenv("DEFAULT_LOCATION_LNG", "-74.0060")),
}


# =============================================================================
# Telephony Configuration
# =============================================================================

TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "")
TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "")
TWILIO_PHONE_NUMBER: str = os.getenv("TWILIO_PHONE_NUMBER", "")

# Public URL of this service; Twilio posts speech/digits/status callbacks here
BASE_URL: str = os.getenv("BASE_URL", "").rstrip("/")

TWILIO_VALIDATE_SIGNATURE: bool = os.getenv("TWILIO_VALIDATE_SIGNATURE", "true").lower() == "true"

# Outbound dial numbers with exactly 10 digits get this country code
DEFAULT_COUNTRY_CODE: str = os.getenv("DEFAULT_COUNTRY_CODE", "1")

# Region used by phonenumbers when the user's callback phone has no "+"
DEFAULT_PHONE_REGION: str = os.getenv("DEFAULT_PHONE_REGION", "US")


# =============================================================================
# Authentication Configuration
# =============================================================================

JWT_SECRET: str = os.getenv("JWT_SECRET", "")
JWT_ALGORITHM: str = "HS256"
JWT_EXPIRE_MINUTES: int = int(os.getenv("JWT_EXPIRE_MINUTES", str(30 * 24 * 60)))


# =============================================================================
# HTTP Configuration
# =============================================================================

_cors_origins_env = os.getenv("CORS_ORIGINS", "")
CORS_ORIGINS: List[str] = [
    origin.strip()
    for origin in _cors_origins_env.split(",")
    if origin.strip()
] or ["*"]

# Each accepted errand may place a real phone call, so submissions are throttled
RATE_LIMIT_ERRANDS: str = os.getenv("RATE_LIMIT_ERRANDS", "10 per minute")
RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"

MAX_REQUEST_LENGTH: int = int(os.getenv("MAX_REQUEST_LENGTH", "1000"))


def get_rate_limit_errands() -> str:
    """Return the current errand submission rate limit (overridable in tests)."""
    return RATE_LIMIT_ERRANDS


def is_twilio_configured() -> bool:
    """Check if Twilio is properly configured."""
    return all([TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN, TWILIO_PHONE_NUMBER])


def describe_configuration() -> List[str]:
    """
    Collect warnings about missing optional collaborators.

    None of these stop the process from starting; the corresponding feature
    fails with a ConfigurationError when it is first used.

    Returns:
        List of human-readable warning strings (empty when fully configured)
    """
    warnings = []
    if not DATABASE_URL:
        warnings.append("DATABASE_URL is not set. Task records are kept in memory only.")
    if not OPENAI_API_KEY:
        warnings.append("OPENAI_API_KEY is not set. Request parsing and call scripting are disabled.")
    if not GOOGLE_MAPS_API_KEY:
        warnings.append("GOOGLE_MAPS_API_KEY is not set. Place search is disabled.")
    if not is_twilio_configured():
        warnings.append("Twilio credentials are not fully set. Calls are disabled and SMS is logged only.")
    if not BASE_URL:
        warnings.append("BASE_URL is not set. Twilio callbacks cannot reach this service.")
    if not JWT_SECRET:
        warnings.append("JWT_SECRET is not set. Login and protected routes will fail.")
    if CORS_ORIGINS == ["*"]:
        warnings.append("CORS_ORIGINS allows all origins. Restrict this in production.")
    return warnings
