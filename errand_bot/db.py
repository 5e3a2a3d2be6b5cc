"""
Database connection management.

The durable store is optional. When DATABASE_URL is set an engine and session
factory are built at import time and the tables are created; otherwise
``engine`` and ``SessionLocal`` stay None and the task store runs on its
in-memory backend alone.

Environment variables:
    - DATABASE_URL: SQLAlchemy connection URL (optional)
"""

import logging
from typing import Generator, Optional

from fastapi import HTTPException, Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker, Session

from . import config
from .models import Base

logger = logging.getLogger(__name__)


def build_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine and make sure the errand tables exist."""
    engine = create_engine(
        database_url,
        pool_pre_ping=True,
        echo=False,
        **kwargs,
    )
    Base.metadata.create_all(bind=engine)
    return engine


def build_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine,
    )


engine: Optional[Engine] = None
SessionLocal: Optional[sessionmaker] = None

if config.DATABASE_URL:
    try:
        engine = build_engine(config.DATABASE_URL)
        SessionLocal = build_session_factory(engine)
    except SQLAlchemyError as e:
        # The service still starts; task records fall back to memory
        logger.error("Could not initialise database at startup: %s", e)
        engine = None
        SessionLocal = None


def get_db(request: Request) -> Generator[Session, None, None]:
    """
    FastAPI dependency that yields a SQLAlchemy Session.

    The session factory is the one the app was built with (see main.create_app),
    so tests can point the whole app at an in-memory SQLite engine.

    Raises 503 when no database is configured, since the routes that depend
    on it (user accounts) have no in-memory fallback.
    """
    session_factory = request.app.state.services.session_factory
    if session_factory is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def database_status(session_factory: Optional[sessionmaker]) -> str:
    """
    Report durable store reachability for the health endpoint.

    Returns:
        "connected", "disconnected" or "not_configured"
    """
    if session_factory is None:
        return "not_configured"
    db = session_factory()
    try:
        db.execute(text("SELECT 1"))
        return "connected"
    except SQLAlchemyError as e:
        logger.warning("Database health check failed: %s", e)
        return "disconnected"
    finally:
        db.close()
