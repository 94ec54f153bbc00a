"""
Shared fixtures for task-lease tests.
"""

import os
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, List

import pytest

from task_lease.storage.memory import InMemoryTaskStore


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self, start: datetime = None):
        self.current = start or datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> None:
        self.current += timedelta(**kwargs)


class RecordingProcessor:
    """Processing callback that records what it saw, failing on request."""

    def __init__(self, fail_ids: Iterable[Any] = (), raise_ids: Iterable[Any] = (), on_task=None):
        self.fail_ids = set(fail_ids)
        self.raise_ids = set(raise_ids)
        self.on_task = on_task
        self.seen: List[Any] = []
        self.tokens: List[str] = []
        self._lock = threading.Lock()

    def __call__(self, task):
        with self._lock:
            self.seen.append(task.id)
            self.tokens.append(task.locked_by)
        if self.on_task:
            self.on_task(task)
        if task.id in self.raise_ids:
            raise RuntimeError(f"processing blew up on {task.id}")
        return task.id not in self.fail_ids


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    """Initialized in-memory task store."""
    task_store = InMemoryTaskStore()
    task_store.initialize()
    yield task_store
    task_store.close()


@pytest.fixture
def seed(store):
    """Insert N pending tasks; ids are 1..N."""
    def _seed(count: int):
        return store.insert_tasks({"name": f"task-{i + 1}"} for i in range(count))
    return _seed


@pytest.fixture
def recorder():
    """Factory for RecordingProcessor instances."""
    return RecordingProcessor


@pytest.fixture
def fake_clock_class():
    return FakeClock


requires_mongodb = pytest.mark.skipif(
    not os.environ.get("TEST_MONGO_URI"),
    reason="TEST_MONGO_URI not set; MongoDB integration tests skipped"
)
