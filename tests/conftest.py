"""
Pytest configuration and shared fixtures.
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from context_memory.extraction.events import TaskReader, TaskSnapshot
from context_memory.memory import (
    ContextCategory,
    ContextItem,
    ContextSource,
    ContextStore,
    SQLiteStorage,
)
from context_memory.observability.metrics import MetricsCollector


# Fixed reference time so decay and age assertions are exact
NOW = datetime(2024, 6, 12, 10, 0, tzinfo=timezone.utc)


def days_ago(days: float, now: datetime = NOW) -> datetime:
    return now - timedelta(days=days)


def make_item(category, key, value=None, source="explicit", confidence=None, age_days=0.0, **kwargs):
    """Build a ContextItem with all timestamps age_days before NOW."""
    moment = days_ago(age_days)
    kwargs.setdefault("created_at", moment)
    kwargs.setdefault("updated_at", moment)
    return ContextItem(
        category=ContextCategory.parse(category),
        key=key,
        value=value or f"About {key}",
        source=ContextSource.parse(source),
        confidence=confidence,
        **kwargs,
    )


def insert_items(storage, items):
    """Insert pre-built items straight into the backend, bypassing the store."""
    for item in items:
        storage.insert(item)
    return items


class FakeTaskReader(TaskReader):
    """In-memory task store."""

    def __init__(self, tasks: Optional[List[TaskSnapshot]] = None):
        self.tasks: Dict[str, TaskSnapshot] = {t.id: t for t in tasks or []}

    def add(self, task: TaskSnapshot) -> TaskSnapshot:
        self.tasks[task.id] = task
        return task

    def get_task(self, task_id: str) -> Optional[TaskSnapshot]:
        return self.tasks.get(task_id)

    def list_tasks(self) -> List[TaskSnapshot]:
        return list(self.tasks.values())


@pytest.fixture
def db_path(tmp_path):
    """Path to a fresh database file."""
    return str(tmp_path / "context.db")


@pytest.fixture
def storage(db_path):
    """SQLite storage on a temporary file."""
    storage = SQLiteStorage(db_path=db_path)
    yield storage
    storage.close()


@pytest.fixture
def metrics():
    return MetricsCollector()


@pytest.fixture
def store(storage, metrics):
    """A store with the default capacity on temporary storage."""
    store = ContextStore(storage=storage, metrics=metrics)
    yield store
    store.close()


@pytest.fixture
def task_reader():
    return FakeTaskReader()
