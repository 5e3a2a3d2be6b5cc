"""
Tests for the two-tier task store.
"""
import pytest
from sqlalchemy.exc import OperationalError

from errand_bot.errors import PersistenceUnavailable
from errand_bot.models import ErrandTask
from errand_bot.schemas import (
    ConversationTurn,
    LocationHint,
    ParsedIntent,
    TaskDetails,
    TaskRecord,
    TaskStatus,
)
from errand_bot.services import MemoryTaskBackend, SqlTaskBackend, TaskStore


def sample_record(task_id="task-1"):
    return TaskRecord(
        task_id=task_id,
        request="book a dentist tomorrow at 3pm",
        callback_phone="+14155550199",
        status=TaskStatus.REQUEST_PARSED,
        location_hint=LocationHint(lat=40.7, lng=-74.0),
        details=TaskDetails(parsed=ParsedIntent(service="dentist", action="book", time_constraint="tomorrow at 3pm")),
        conversation_log=[ConversationTurn(speaker="assistant", text="Hello")],
    )


class FlakySessionFactory:
    """Session factory whose sessions fail on every query."""

    def __call__(self):
        return FlakySession()


class FlakySession:
    def query(self, *args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("server closed the connection"))

    def rollback(self):
        pass

    def close(self):
        pass


# =============================================================================
# Memory backend
# =============================================================================

class TestMemoryTaskBackend:
    """Tests for MemoryTaskBackend."""

    def test_unknown_task_is_none(self):
        assert MemoryTaskBackend().get("missing") is None

    def test_returns_copies(self):
        backend = MemoryTaskBackend()
        record = sample_record()
        backend.put(record)

        loaded = backend.get("task-1")
        loaded.status = TaskStatus.FAILED

        assert backend.get("task-1").status == TaskStatus.REQUEST_PARSED
        assert len(backend) == 1


# =============================================================================
# SQL backend
# =============================================================================

class TestSqlTaskBackend:
    """Tests for SqlTaskBackend against SQLite."""

    def test_put_then_get(self, session_factory):
        backend = SqlTaskBackend(session_factory)
        backend.put(sample_record())

        loaded = backend.get("task-1")

        assert loaded.request == "book a dentist tomorrow at 3pm"
        assert loaded.status == TaskStatus.REQUEST_PARSED
        assert loaded.location_hint.lat == 40.7
        assert loaded.details.parsed.time_constraint == "tomorrow at 3pm"
        assert loaded.conversation_log[0].text == "Hello"

    def test_put_updates_existing_row(self, session_factory):
        backend = SqlTaskBackend(session_factory)
        record = sample_record()
        backend.put(record)

        record.status = TaskStatus.FINDING_PLACES
        record.call_sid = "CA123"
        backend.put(record)

        db = session_factory()
        try:
            rows = db.query(ErrandTask).filter(ErrandTask.task_id == "task-1").all()
        finally:
            db.close()
        assert len(rows) == 1
        assert rows[0].status == "finding_places"
        assert rows[0].call_sid == "CA123"
        assert rows[0].details["parsed"]["timeConstraint"] == "tomorrow at 3pm"

    def test_database_errors_become_persistence_unavailable(self):
        backend = SqlTaskBackend(FlakySessionFactory())

        with pytest.raises(PersistenceUnavailable):
            backend.get("task-1")
        with pytest.raises(PersistenceUnavailable):
            backend.put(sample_record())


# =============================================================================
# Facade
# =============================================================================

class TestTaskStore:
    """Tests for TaskStore fallback behavior."""

    def test_memory_only_store(self):
        store = TaskStore()
        store.save(sample_record())

        assert not store.has_durable
        assert store.load("task-1").request == "book a dentist tomorrow at 3pm"

    def test_save_writes_both_tiers(self, session_factory):
        memory = MemoryTaskBackend()
        store = TaskStore(durable=SqlTaskBackend(session_factory), memory=memory)

        store.save(sample_record())

        assert memory.get("task-1") is not None
        assert SqlTaskBackend(session_factory).get("task-1") is not None

    def test_durable_read_syncs_memory(self, session_factory):
        SqlTaskBackend(session_factory).put(sample_record())
        memory = MemoryTaskBackend()
        store = TaskStore(durable=SqlTaskBackend(session_factory), memory=memory)

        assert store.load("task-1") is not None
        assert memory.get("task-1") is not None

    def test_falls_back_to_memory_when_durable_down(self):
        memory = MemoryTaskBackend()
        memory.put(sample_record())
        store = TaskStore(durable=SqlTaskBackend(FlakySessionFactory()), memory=memory)

        assert store.load("task-1").request == "book a dentist tomorrow at 3pm"

    def test_falls_back_to_memory_when_durable_misses(self, session_factory):
        memory = MemoryTaskBackend()
        memory.put(sample_record("memory-only"))
        store = TaskStore(durable=SqlTaskBackend(session_factory), memory=memory)

        assert store.load("memory-only") is not None
        assert store.load("nowhere") is None

    def test_failed_durable_save_raises_and_leaves_memory(self):
        memory = MemoryTaskBackend()
        store = TaskStore(durable=SqlTaskBackend(FlakySessionFactory()), memory=memory)

        with pytest.raises(PersistenceUnavailable):
            store.save(sample_record())
        assert memory.get("task-1") is None

        store.remember(sample_record())
        assert memory.get("task-1") is not None
