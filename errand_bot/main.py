"""
Application factory for the errand service.

``create_app`` wires every collaborator by constructor injection and stores
the resulting ErrandServices container on ``app.state.services``. The
module-level ``app`` is built from configuration for uvicorn:

    uvicorn errand_bot.main:app

Tests call ``create_app`` with fake collaborators and an in-memory database.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.orm import sessionmaker

from . import config, db
from .db import database_status
from .errors import ErrandError
from .llm_client import LLMClient
from .logging_config import setup_logging
from .middleware import RequestIDMiddleware, RequestLoggingMiddleware
from .places_service import PlacesService
from .routes import auth_router, errands_router, limiter, realtime_router
from .services import build_services
from .telephony import TwilioTelephony

logger = logging.getLogger(__name__)


def _error_body(status_code: int, message: str, task_id: Optional[str] = None) -> dict:
    body = {"status": "error", "statusCode": status_code, "message": message}
    if task_id:
        body["taskId"] = task_id
    return body


async def errand_error_handler(request: Request, exc: ErrandError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(exc.status_code, exc.message, exc.task_id),
    )


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = ", ".join(".".join(str(p) for p in err["loc"] if p != "body") for err in exc.errors())
    message = f"Invalid request: {fields}" if fields else "Invalid request"
    return JSONResponse(status_code=400, content=_error_body(400, message))


def create_app(
    llm=None,
    places=None,
    telephony=None,
    session_factory: Optional[sessionmaker] = None,
    use_configured_database: bool = True,
    validate_signatures: Optional[bool] = None,
) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        llm: Intent parser / script writer / turn decider (default: LLMClient)
        places: Place resolver (default: PlacesService)
        telephony: Call and SMS provider (default: TwilioTelephony)
        session_factory: SQLAlchemy session factory for the durable store and
            accounts. Defaults to db.SessionLocal (None without DATABASE_URL)
            unless use_configured_database is False.
        validate_signatures: Check X-Twilio-Signature (default: config)

    Returns:
        Configured FastAPI application
    """
    if session_factory is None and use_configured_database:
        session_factory = db.SessionLocal

    services = build_services(
        llm=llm or LLMClient(),
        places=places or PlacesService(),
        telephony=telephony or TwilioTelephony(),
        session_factory=session_factory,
        validate_signatures=config.TWILIO_VALIDATE_SIGNATURE if validate_signatures is None else validate_signatures,
    )

    for warning in config.describe_configuration():
        logger.warning(warning)
    if not (services.validate_signatures and services.telephony.auth_token):
        logger.warning("Twilio callback signatures are not being validated")

    app = FastAPI(
        title="Errand Bot API",
        description="Submit errands that are carried out by automated phone calls",
        version="1.0.0",
        openapi_tags=[
            {"name": "Health", "description": "Health check endpoints"},
            {"name": "Errands", "description": "Errand submission, status and telephony callbacks"},
            {"name": "Auth", "description": "User accounts and tokens"},
            {"name": "Realtime", "description": "WebSocket task updates"},
        ],
    )
    app.state.services = services

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.CORS_ORIGINS,
        allow_credentials=config.CORS_ORIGINS != ["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Configure rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    app.add_exception_handler(ErrandError, errand_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    app.include_router(errands_router)
    app.include_router(auth_router)
    app.include_router(realtime_router)

    @app.get("/health", tags=["Health"])
    def health_check():
        return {
            "status": "UP",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database": database_status(services.session_factory),
        }

    logger.info(
        "Application created (durable store: %s)",
        "enabled" if services.store.has_durable else "memory only",
    )
    return app


setup_logging()

app = create_app()
