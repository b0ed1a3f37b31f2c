"""
Context Memory - adaptive user-context memory for a task manager.

Remembers who the user works with, what they are working towards, when
they get things done and what they have explicitly said about
themselves, and surfaces the most relevant of it for an LLM prompt.

Key features:
- Capacity-bounded SQLite store with per-source confidence and decay
- Reinforcement of repeated observations instead of duplicates
- Daily and on-activation retention maintenance
- Relevance ranking with an access feedback loop
- Passive signal extraction from task lifecycle events
- Insight aggregation and a one-line prompt summary
"""

__version__ = "0.1.0"

from .errors import (
    ContextMemoryError,
    SaveFailed,
    FetchFailed,
    DeleteFailed,
    NotFound,
    InvalidData,
)

from .memory import (
    ContextCategory,
    ContextSource,
    ContextItem,
    ContextStore,
    SQLiteStorage,
    RetentionPolicy,
    MaintenanceReport,
    RelevanceRanker,
    Intent,
    InsightAggregator,
    PatternInsight,
)

from .extraction import (
    SignalExtractor,
    TaskEventChannel,
    TaskReader,
    TaskSnapshot,
)

from .tools import ContextTools

from .config import (
    ContextMemoryConfig,
    load_config,
)


__all__ = [
    "__version__",
    # Errors
    "ContextMemoryError",
    "SaveFailed",
    "FetchFailed",
    "DeleteFailed",
    "NotFound",
    "InvalidData",
    # Memory
    "ContextCategory",
    "ContextSource",
    "ContextItem",
    "ContextStore",
    "SQLiteStorage",
    "RetentionPolicy",
    "MaintenanceReport",
    "RelevanceRanker",
    "Intent",
    "InsightAggregator",
    "PatternInsight",
    # Extraction
    "SignalExtractor",
    "TaskEventChannel",
    "TaskReader",
    "TaskSnapshot",
    # Tools
    "ContextTools",
    # Config
    "ContextMemoryConfig",
    "load_config",
]
