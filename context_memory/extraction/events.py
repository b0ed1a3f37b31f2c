"""
Task lifecycle events and the task-store interface the extractor reads.

Events carry only the task id; subscribers re-read the task's current
fields through a TaskReader.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, Dict, List, Optional

from ..memory.types import parse_datetime


logger = logging.getLogger(__name__)


class TaskEventKind(str, Enum):
    CREATED = "created"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TaskEvent:
    """A task was created/modified or completed."""
    kind: TaskEventKind
    task_id: str


@dataclass
class TaskSnapshot:
    """
    The task fields signal extraction looks at.

    Attributes:
        id: Task identifier
        title: Task title
        notes: Free-text notes
        list_name: Name of the list the task belongs to
        scheduled_time: When the task is scheduled or due
        is_recurring: Whether the task repeats
        recurrence_days: Weekdays it repeats on (1 = Sunday)
        completed_at: When the task was completed
    """

    id: str
    title: str
    notes: Optional[str] = None
    list_name: Optional[str] = None
    scheduled_time: Optional[datetime] = None
    is_recurring: bool = False
    recurrence_days: List[int] = field(default_factory=list)
    completed_at: Optional[datetime] = None

    @property
    def text(self) -> str:
        return f"{self.title} {self.notes or ''}"


class TaskReader(ABC):
    """Read access to the task store."""

    @abstractmethod
    def get_task(self, task_id: str) -> Optional[TaskSnapshot]:
        """Current fields of a task, or None if it no longer exists."""
        pass

    @abstractmethod
    def list_tasks(self) -> List[TaskSnapshot]:
        """All tasks, for backfilling."""
        pass


TaskEventHandler = Callable[[TaskEvent], None]


class TaskEventChannel:
    """
    Explicit publish/subscribe channel for task lifecycle events.

    Handlers run synchronously in subscription order. A handler that
    raises is logged and does not prevent the others from running, nor
    does the failure reach the publisher.
    """

    def __init__(self):
        self._handlers: List[TaskEventHandler] = []
        self._lock = threading.Lock()

    def subscribe(self, handler: TaskEventHandler) -> None:
        with self._lock:
            if handler not in self._handlers:
                self._handlers.append(handler)

    def unsubscribe(self, handler: TaskEventHandler) -> None:
        with self._lock:
            if handler in self._handlers:
                self._handlers.remove(handler)

    @property
    def handler_count(self) -> int:
        return len(self._handlers)

    def publish(self, event: TaskEvent) -> None:
        with self._lock:
            handlers = list(self._handlers)

        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.error(f"Task event handler failed for {event.kind.value} {event.task_id}: {e}")

    def task_created(self, task_id: str) -> None:
        self.publish(TaskEvent(TaskEventKind.CREATED, task_id))

    def task_completed(self, task_id: str) -> None:
        self.publish(TaskEvent(TaskEventKind.COMPLETED, task_id))


class JsonFileTaskReader(TaskReader):
    """
    Reads tasks from a JSON export: a list of objects, or {"tasks": [...]}.

    Each object needs "id" and "title"; the other TaskSnapshot fields are
    optional, with datetimes as ISO strings.
    """

    def __init__(self, path: str):
        self.path = path
        self._tasks: Optional[Dict[str, TaskSnapshot]] = None

    def _load(self) -> Dict[str, TaskSnapshot]:
        if self._tasks is None:
            with open(self.path, "r") as f:
                data = json.load(f)
            rows = data.get("tasks", []) if isinstance(data, dict) else data
            self._tasks = {}
            for row in rows:
                task = TaskSnapshot(
                    id=str(row["id"]),
                    title=row["title"],
                    notes=row.get("notes"),
                    list_name=row.get("list_name"),
                    scheduled_time=parse_datetime(row.get("scheduled_time")),
                    is_recurring=bool(row.get("is_recurring", False)),
                    recurrence_days=[int(d) for d in row.get("recurrence_days") or []],
                    completed_at=parse_datetime(row.get("completed_at")),
                )
                self._tasks[task.id] = task
        return self._tasks

    def get_task(self, task_id: str) -> Optional[TaskSnapshot]:
        return self._load().get(str(task_id))

    def list_tasks(self) -> List[TaskSnapshot]:
        return list(self._load().values())
