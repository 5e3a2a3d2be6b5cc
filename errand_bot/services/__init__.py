"""
Services Package for Errand Bot
===============================

Business logic of the errand service, independent of HTTP wiring.

Available Services:
-------------------
- **task_store**: Durable + in-memory task persistence behind one facade
- **notifier**: Per-task topics of live WebSocket subscribers
- **state_machine**: The single writer of task records (apply_transition)
- **phone**: Callback phone validation and dial number cleaning
- **orchestration**: Errand pipeline from request to placed call
- **callbacks**: Telephony callback reconciliation

Dependency Injection:
---------------------
Services receive their collaborators through their constructors. The app
factory builds one ``ErrandServices`` container and stores it on
``app.state.services``; routes fetch it with ``Depends(get_services)``.
Tests build the container with fake collaborators.

Usage:
------
    from errand_bot.services import ErrandServices, get_services

    @router.get("/thing")
    async def thing(services: ErrandServices = Depends(get_services)):
        record = await services.state_machine.get(task_id)
"""

from dataclasses import dataclass
from typing import Any, Optional

from fastapi import Request
from sqlalchemy.orm import sessionmaker

from .callbacks import CallbackReconciler
from .notifier import TaskNotifier
from .orchestration import ErrandFlow
from .state_machine import TaskStateMachine
from .task_store import MemoryTaskBackend, SqlTaskBackend, TaskStore


@dataclass
class ErrandServices:
    """Everything the routes need, wired once per app."""
    store: TaskStore
    notifier: TaskNotifier
    state_machine: TaskStateMachine
    flow: ErrandFlow
    reconciler: CallbackReconciler
    telephony: Any
    session_factory: Optional[sessionmaker] = None
    validate_signatures: bool = True


def build_services(
    llm,
    places,
    telephony,
    session_factory: Optional[sessionmaker] = None,
    validate_signatures: bool = True,
) -> ErrandServices:
    """Compose the persistence, fan-out, state machine and flows."""
    durable = SqlTaskBackend(session_factory) if session_factory is not None else None
    store = TaskStore(durable=durable, memory=MemoryTaskBackend())
    notifier = TaskNotifier()
    state_machine = TaskStateMachine(store, notifier)
    return ErrandServices(
        store=store,
        notifier=notifier,
        state_machine=state_machine,
        flow=ErrandFlow(state_machine, llm=llm, places=places, telephony=telephony),
        reconciler=CallbackReconciler(state_machine, llm=llm, telephony=telephony),
        telephony=telephony,
        session_factory=session_factory,
        validate_signatures=validate_signatures,
    )


def get_services(request: Request) -> ErrandServices:
    """FastAPI dependency returning the app's service container."""
    return request.app.state.services


__all__ = [
    "ErrandServices",
    "build_services",
    "get_services",
    "TaskStore",
    "SqlTaskBackend",
    "MemoryTaskBackend",
    "TaskNotifier",
    "TaskStateMachine",
    "ErrandFlow",
    "CallbackReconciler",
]
