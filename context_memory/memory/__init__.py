"""
Context memory core.

Persistence, reinforcement, retention, ranking and insights over
context items.

Key features:
- SQLite-based persistent storage with a hard capacity
- Per-source confidence, reinforcement and time decay
- Stale, weak-pattern and excess pruning
- Relevance ranking that marks returned items accessed
- Export/import functionality
"""

from .types import (
    ContextCategory,
    ContextSource,
    ContextItem,
    MemoryStats,
    PersonMetadata,
    ScheduleMetadata,
    GoalMetadata,
    PatternMetadata,
    OtherMetadata,
    Relationship,
    Importance,
    ScheduleType,
    GoalStatus,
    PatternType,
)

from .storage import (
    ContextStorage,
    SQLiteStorage,
)

from .store import (
    ContextStore,
)

from .retention import (
    RetentionPolicy,
    MaintenanceReport,
)

from .ranker import (
    RelevanceRanker,
    Intent,
    IntentPolicy,
    INTENT_POLICIES,
)

from .insights import (
    InsightAggregator,
    PatternInsight,
    InsightType,
)


__all__ = [
    # Types
    "ContextCategory",
    "ContextSource",
    "ContextItem",
    "MemoryStats",
    "PersonMetadata",
    "ScheduleMetadata",
    "GoalMetadata",
    "PatternMetadata",
    "OtherMetadata",
    "Relationship",
    "Importance",
    "ScheduleType",
    "GoalStatus",
    "PatternType",
    # Storage
    "ContextStorage",
    "SQLiteStorage",
    # Store
    "ContextStore",
    # Retention
    "RetentionPolicy",
    "MaintenanceReport",
    # Ranking
    "RelevanceRanker",
    "Intent",
    "IntentPolicy",
    "INTENT_POLICIES",
    # Insights
    "InsightAggregator",
    "PatternInsight",
    "InsightType",
]
