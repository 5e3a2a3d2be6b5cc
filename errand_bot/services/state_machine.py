"""
Task State Machine for Errand Bot
=================================

The only writer of task records. Every change to a task, whether it comes
from the orchestration flow, a telephony callback, or task creation, goes
through ``TaskStateMachine.apply_transition``.

One Transition:
---------------
1. Load the current record (durable if reachable, else memory, else an
   empty shell for a brand-new task).
2. Merge the partial update over it:
   - scalar fields overwrite when set in the update
   - ``details`` and ``call_outcome`` merge field by field
   - ``append_turns`` is appended to the conversation log
   - ``status`` is only applied if it moves forward (see
     ``schemas.task.is_forward_transition``); a rejected status is logged
     and the rest of the update still lands
   - ``last_updated`` is always refreshed
3. Append a history entry ``{step, details, error}`` unless it equals the
   previous entry (timestamps ignored).
4. Write durably. If the durable store is down, keep the record in memory
   and prefix the task's ``error`` with a persistence note. The caller's
   update is never discarded and no exception escapes.
5. Publish exactly one ``task_update`` event carrying the full record.
6. Return the record, identical to the one published.

Concurrency:
------------
Transitions for the same task are serialised with a per-task asyncio.Lock
held from load to publish, so a telephony callback arriving while the
orchestration flow is mid-pipeline cannot interleave with it. Different
tasks never wait on each other. With several worker processes the durable
store is still last-write-wins.
"""

import asyncio
import logging
import weakref
from datetime import datetime
from typing import Optional

from starlette.concurrency import run_in_threadpool

from ..errors import PersistenceUnavailable
from ..schemas import (
    CallOutcome,
    HistoryEntry,
    TaskDetails,
    TaskRecord,
    TaskStatus,
    TaskUpdate,
    TaskUpdateEvent,
    is_forward_transition,
    utc_now,
)
from .notifier import TaskNotifier
from .task_store import TaskStore

logger = logging.getLogger(__name__)

_SCALAR_FIELDS = ("request", "callback_phone", "location_hint", "user_id", "call_sid", "error")


def _merge_fields(target, patch) -> None:
    """Copy every non-None field of ``patch`` onto ``target``."""
    for name in type(patch).model_fields:
        value = getattr(patch, name)
        if value is not None:
            setattr(target, name, value)


def merge_update(current: TaskRecord, update: TaskUpdate, now: Optional[datetime] = None) -> TaskRecord:
    """
    Return a new record with ``update`` merged over ``current``.

    ``current`` and ``update`` are not modified.
    """
    record = current.model_copy(deep=True)
    update = update.model_copy(deep=True)

    for name in _SCALAR_FIELDS:
        value = getattr(update, name)
        if value is not None:
            setattr(record, name, value)

    if update.details is not None:
        _merge_fields(record.details, update.details)

    if update.call_outcome is not None:
        if record.call_outcome is None:
            record.call_outcome = CallOutcome()
        _merge_fields(record.call_outcome, update.call_outcome)

    record.conversation_log.extend(update.append_turns)

    if update.status is not None:
        if is_forward_transition(record.status, update.status):
            record.status = update.status
        else:
            logger.warning(
                "[%s] Ignoring status change %s -> %s",
                record.task_id, record.status.value, update.status.value,
            )

    record.last_updated = now or utc_now()

    entry = HistoryEntry(
        step=record.status,
        timestamp=record.last_updated,
        details=update.details_delta(),
        error=update.error,
    )
    if not record.history or not record.history[-1].same_as(entry):
        record.history.append(entry)

    return record


class TaskStateMachine:
    """Applies transitions to task records and announces each one."""

    def __init__(self, store: TaskStore, notifier: TaskNotifier):
        self.store = store
        self.notifier = notifier
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, task_id: str) -> asyncio.Lock:
        lock = self._locks.get(task_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[task_id] = lock
        return lock

    async def get(self, task_id: str) -> Optional[TaskRecord]:
        """Read the current record without changing it."""
        return await run_in_threadpool(self.store.load, task_id)

    async def apply_transition(self, task_id: str, update: TaskUpdate) -> TaskRecord:
        """
        Merge ``update`` into the task, persist it and publish it.

        Never raises for persistence failures; the returned record is the
        authoritative post-merge state and equals the published ``taskData``.
        """
        lock = self._lock_for(task_id)
        async with lock:
            current = await run_in_threadpool(self.store.load, task_id)
            if current is None:
                current = TaskRecord(task_id=task_id)

            record = merge_update(current, update)

            try:
                await run_in_threadpool(self.store.save, record)
            except PersistenceUnavailable as e:
                logger.error("[%s] Durable write failed, keeping task in memory: %s", task_id, e)
                note = f"Persistence error: {e}"
                if not record.error:
                    record.error = note
                elif not record.error.startswith(note):
                    record.error = f"{note}. {record.error}"
                self.store.remember(record)

            if update.status is not None:
                logger.info("[%s] Status: %s", task_id, record.status.value)

            await self.notifier.publish(TaskUpdateEvent.from_record(record))
            return record

    async def fail(self, task_id: str, message: str) -> TaskRecord:
        """Commit the universal ``failed`` transition with an error message."""
        return await self.apply_transition(task_id, TaskUpdate(status=TaskStatus.FAILED, error=message))
