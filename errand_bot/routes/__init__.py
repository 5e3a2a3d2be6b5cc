"""
Routes Package for Errand Bot
=============================

API route definitions grouped by domain. Each module defines a FastAPI
APIRouter; all of them are registered in main.create_app.

- errands.py: Errand submission, status, and telephony callbacks
- auth.py: Register, login, current user
- realtime.py: WebSocket endpoint for live task updates

Route Dependencies:
-------------------
- get_services: the app's ErrandServices container (state machine, flow, ...)
- get_db: Database session for account queries
- optional_user_id / require_user_id / get_current_user: bearer token auth
"""

from .errands import router as errands_router, limiter
from .auth import router as auth_router
from .realtime import router as realtime_router

__all__ = ["errands_router", "auth_router", "realtime_router", "limiter"]
