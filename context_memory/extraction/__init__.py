"""
Passive learning from task lifecycle events.
"""

from .events import (
    TaskEvent,
    TaskEventKind,
    TaskEventChannel,
    TaskReader,
    TaskSnapshot,
    JsonFileTaskReader,
)
from .extractor import SignalExtractor

__all__ = [
    "TaskEvent",
    "TaskEventKind",
    "TaskEventChannel",
    "TaskReader",
    "TaskSnapshot",
    "JsonFileTaskReader",
    "SignalExtractor",
]
