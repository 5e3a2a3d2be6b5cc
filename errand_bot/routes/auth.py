"""
Account routes: register, login, and the current user.

Register and login both answer {success, token, user}; the token is a bearer
JWT accepted by the errand routes (see auth.py).
"""

import logging

from email_validator import EmailNotValidError, validate_email
from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..auth import create_access_token, get_current_user, hash_password, verify_password
from ..db import get_db
from ..errors import AuthenticationError, ValidationError
from ..models import User
from ..schemas import AuthResponse, Credentials, MeResponse, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["Auth"])

MIN_PASSWORD_LENGTH = 6


def _normalize_email(raw: str) -> str:
    try:
        result = validate_email(raw.strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Please provide a valid email: {e}") from e
    return result.normalized.lower()


@router.post("/register", response_model=AuthResponse, status_code=201)
def register(body: Credentials, db: Session = Depends(get_db)) -> AuthResponse:
    email = _normalize_email(body.email)
    if len(body.password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    if db.query(User).filter(User.email == email).first() is not None:
        raise ValidationError("User already exists")

    user = User(email=email, password_hash=hash_password(body.password))
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ValidationError("User already exists") from e
    db.refresh(user)

    logger.info("Registered user %d", user.id)
    return AuthResponse(token=create_access_token(user.id), user=UserOut.model_validate(user))


@router.post("/login", response_model=AuthResponse)
def login(body: Credentials, db: Session = Depends(get_db)) -> AuthResponse:
    try:
        email = _normalize_email(body.email)
    except ValidationError as e:
        raise AuthenticationError("Invalid credentials") from e

    user = db.query(User).filter(User.email == email).first()
    if user is None or not verify_password(body.password, user.password_hash):
        raise AuthenticationError("Invalid credentials")

    return AuthResponse(token=create_access_token(user.id), user=UserOut.model_validate(user))


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)) -> MeResponse:
    return MeResponse(user=UserOut.model_validate(user))
