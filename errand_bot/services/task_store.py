"""
Task Store for Errand Bot
=========================

This module keeps errand task records with a two-tier storage strategy:
1. **Durable Backend**: SQLAlchemy table ``errand_tasks`` (optional)
2. **Memory Backend**: In-process dictionary, always present

Architecture Overview:
----------------------
``TaskStore`` composes the two backends behind one facade:
- Reads prefer the durable copy when the database is reachable and has the
  task, and fall back to memory otherwise (unreachable, or the record only
  made it into memory while the database was down).
- Writes go to the durable backend first. Whichever write succeeds, memory
  is synced with the same record so a later outage still has a copy.
- A durable write failure is raised as PersistenceUnavailable; the state
  machine decides what to do with it (it records to memory and annotates
  the task's error).

Without DATABASE_URL the store runs on memory alone and never raises.

Thread Safety:
--------------
Backends are synchronous. The state machine calls them through Starlette's
threadpool, so the memory backend guards its dict with a threading.Lock.

Usage:
------
    store = TaskStore(durable=SqlTaskBackend(SessionLocal), memory=MemoryTaskBackend())

    record = store.load(task_id)        # None if the task is unknown
    store.save(record)                  # may raise PersistenceUnavailable
    store.remember(record)              # memory only
"""

import logging
import threading
from typing import Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from ..errors import PersistenceUnavailable
from ..models import ErrandTask
from ..schemas import TaskRecord

logger = logging.getLogger(__name__)


# =============================================================================
# Memory Backend
# =============================================================================

class MemoryTaskBackend:
    """In-process map of task id to record. Returns copies, never live objects."""

    def __init__(self):
        self._records: Dict[str, TaskRecord] = {}
        self._lock = threading.Lock()

    def get(self, task_id: str) -> Optional[TaskRecord]:
        with self._lock:
            record = self._records.get(task_id)
            return record.model_copy(deep=True) if record is not None else None

    def put(self, record: TaskRecord) -> None:
        with self._lock:
            self._records[record.task_id] = record.model_copy(deep=True)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


# =============================================================================
# Durable Backend
# =============================================================================

def _row_to_record(row: ErrandTask) -> TaskRecord:
    return TaskRecord.model_validate({
        "task_id": row.task_id,
        "request": row.request,
        "callback_phone": row.callback_phone,
        "status": row.status,
        "location_hint": row.location_hint,
        "details": row.details or {},
        "call_sid": row.call_sid,
        "conversation_log": row.conversation_log or [],
        "call_outcome": row.call_outcome,
        "history": row.history or [],
        "error": row.error,
        "user_id": row.user_id,
        "last_updated": row.last_updated,
    })


def _copy_record_to_row(record: TaskRecord, row: ErrandTask) -> None:
    doc = record.model_dump(mode="json", by_alias=True)
    row.request = record.request
    row.callback_phone = record.callback_phone
    row.status = record.status.value
    row.location_hint = doc["locationHint"]
    row.details = doc["details"]
    row.call_sid = record.call_sid
    row.conversation_log = doc["conversationLog"]
    row.call_outcome = doc["callOutcome"]
    row.history = doc["history"]
    row.error = record.error
    row.user_id = record.user_id
    row.last_updated = record.last_updated


class SqlTaskBackend:
    """
    Task records in the ``errand_tasks`` table.

    Every SQLAlchemy error is re-raised as PersistenceUnavailable so callers
    only deal with one failure type.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def get(self, task_id: str) -> Optional[TaskRecord]:
        db = self.session_factory()
        try:
            row = db.query(ErrandTask).filter(ErrandTask.task_id == task_id).first()
            return _row_to_record(row) if row is not None else None
        except SQLAlchemyError as e:
            raise PersistenceUnavailable(str(e)) from e
        finally:
            db.close()

    def put(self, record: TaskRecord) -> None:
        db = self.session_factory()
        try:
            row = db.query(ErrandTask).filter(ErrandTask.task_id == record.task_id).first()
            if row is None:
                row = ErrandTask(task_id=record.task_id)
                db.add(row)
            _copy_record_to_row(record, row)
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise PersistenceUnavailable(str(e)) from e
        finally:
            db.close()


# =============================================================================
# Facade
# =============================================================================

class TaskStore:
    """Durable-first task persistence with an in-memory fallback."""

    def __init__(self, durable: Optional[SqlTaskBackend] = None, memory: Optional[MemoryTaskBackend] = None):
        self.durable = durable
        self.memory = memory if memory is not None else MemoryTaskBackend()

    @property
    def has_durable(self) -> bool:
        return self.durable is not None

    def load(self, task_id: str) -> Optional[TaskRecord]:
        """
        Load a task record.

        Returns:
            The durable copy when reachable and present, else the memory copy,
            else None for an unknown task.
        """
        if self.durable is not None:
            try:
                record = self.durable.get(task_id)
            except PersistenceUnavailable as e:
                logger.warning("[%s] Durable store unreachable on read, using memory: %s", task_id, e)
            else:
                if record is not None:
                    self.memory.put(record)
                    return record
        return self.memory.get(task_id)

    def save(self, record: TaskRecord) -> None:
        """
        Write a record durably, then sync memory.

        Raises:
            PersistenceUnavailable: the durable write failed; memory is untouched.
        """
        if self.durable is not None:
            self.durable.put(record)
        self.memory.put(record)

    def remember(self, record: TaskRecord) -> None:
        """Keep a record in memory only (durable store is down)."""
        self.memory.put(record)
