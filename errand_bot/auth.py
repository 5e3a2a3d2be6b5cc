"""
Authentication Module for Errand Bot
====================================

User accounts and bearer tokens for the errand API.

Authentication Methods:
-----------------------
1. **Email + password**: /auth/register and /auth/login. Passwords are stored
   as salted PBKDF2-SHA256 hashes and compared with ``secrets.compare_digest``.

2. **Bearer JWT**: login and register return an HS256 token signed with
   JWT_SECRET whose ``sub`` is the user id. Send it as
   ``Authorization: Bearer <token>``.

Route Protection:
-----------------
- ``require_user_id``: the token must be present and valid (status endpoint)
- ``optional_user_id``: no token is fine; a bad token is still rejected
  (errand submission records the user when known)
- ``get_current_user``: like require_user_id, plus loads the User row

Failures answer 401 with ``WWW-Authenticate: Bearer``. A missing JWT_SECRET
is a ConfigurationError (500): tokens are never issued or accepted unsigned.

Configuration:
--------------
Environment variables (see config.py):
- JWT_SECRET: signing key (required for any auth route)
- JWT_EXPIRE_MINUTES: token lifetime (default: 30 days)
"""

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from . import config
from .db import get_db
from .errors import AuthenticationError, ConfigurationError
from .models import User


# =============================================================================
# Password Hashing
# =============================================================================

PBKDF2_ITERATIONS = 260_000
_HASH_SCHEME = "pbkdf2_sha256"


def hash_password(password: str) -> str:
    """Return ``scheme$iterations$salt$hash`` for storage."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), PBKDF2_ITERATIONS)
    return f"{_HASH_SCHEME}${PBKDF2_ITERATIONS}${salt}${digest.hex()}"


def verify_password(password: str, stored: str) -> bool:
    try:
        scheme, iterations, salt, expected = stored.split("$")
    except (AttributeError, ValueError):
        return False
    if scheme != _HASH_SCHEME:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("utf-8"), int(iterations))
    # Constant-time comparison
    return secrets.compare_digest(digest.hex().encode("utf-8"), expected.encode("utf-8"))


# =============================================================================
# Tokens
# =============================================================================

def _secret() -> str:
    if not config.JWT_SECRET:
        raise ConfigurationError("JWT_SECRET is not configured")
    return config.JWT_SECRET


def create_access_token(user_id: int, expires_minutes: Optional[int] = None) -> str:
    expires = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes or config.JWT_EXPIRE_MINUTES)
    payload = {"sub": str(user_id), "exp": expires}
    return jwt.encode(payload, _secret(), algorithm=config.JWT_ALGORITHM)


def decode_access_token(token: str) -> int:
    """
    Return the user id in a token.

    Raises:
        AuthenticationError: expired, badly signed or malformed token
    """
    secret = _secret()
    try:
        payload = jwt.decode(token, secret, algorithms=[config.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise AuthenticationError("Not authorized, token expired") from e
    except jwt.InvalidTokenError as e:
        raise AuthenticationError("Not authorized, token failed") from e

    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as e:
        raise AuthenticationError("Not authorized, token failed") from e


# =============================================================================
# Dependencies
# =============================================================================

bearer_scheme = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def require_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> int:
    """Dependency: a valid bearer token is required; returns its user id."""
    if credentials is None or not credentials.credentials:
        raise _unauthorized("Not authorized, no token")
    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError as e:
        raise _unauthorized(e.message) from e


def optional_user_id(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[int]:
    """Dependency: user id when a token is sent, None when it is not."""
    if credentials is None or not credentials.credentials:
        return None
    try:
        return decode_access_token(credentials.credentials)
    except AuthenticationError as e:
        raise _unauthorized(e.message) from e


def get_current_user(
    user_id: int = Depends(require_user_id),
    db: Session = Depends(get_db),
) -> User:
    """Dependency: the authenticated User row."""
    user = db.query(User).filter(User.id == user_id).first()
    if user is None:
        raise _unauthorized("Not authorized, user not found")
    return user
