"""
Type definitions for the context memory.

A context item is one (category, key) -> value fact about the user,
scored with a confidence that decays while the item goes unused.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from ..errors import InvalidData


SECONDS_PER_DAY = 86400.0

# Retention thresholds
STALE_CONFIDENCE_FLOOR = 0.1
STALE_WINDOW_DAYS = 90
DECAY_FLOOR = 0.1


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Parse a datetime from string or return as-is if already datetime.

    Handles ISO format strings including 'Z' suffix for UTC. Naive
    values are assumed to be UTC.

    Args:
        value: String or datetime to parse

    Returns:
        Parsed datetime or None

    Raises:
        InvalidData: If the value is not a datetime or an ISO string
    """
    if value is None:
        return None
    if isinstance(value, str):
        text = value[:-1] + '+00:00' if value.endswith('Z') else value
        try:
            value = datetime.fromisoformat(text)
        except ValueError as e:
            raise InvalidData(f"Invalid timestamp: {value!r}") from e
    if not isinstance(value, datetime):
        raise InvalidData(f"Invalid timestamp: {value!r}")
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def normalize_key(key: str) -> str:
    """Keys are compared lower-cased and trimmed."""
    return key.strip().lower()


class ContextCategory(Enum):
    """What kind of fact an item records."""

    PERSON = "person"
    PREFERENCE = "preference"
    SCHEDULE = "schedule"
    GOAL = "goal"
    CONSTRAINT = "constraint"
    PATTERN = "pattern"
    OTHER = "other"

    @classmethod
    def parse(cls, raw: Union[str, "ContextCategory"]) -> "ContextCategory":
        """Parse a raw category string, rejecting unknown values."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise InvalidData(f"Unknown context category: {raw!r}")

    @property
    def display_name(self) -> str:
        return _CATEGORY_DISPLAY_NAMES[self]


_CATEGORY_DISPLAY_NAMES = {
    ContextCategory.PERSON: "People",
    ContextCategory.PREFERENCE: "Preferences",
    ContextCategory.SCHEDULE: "Schedule",
    ContextCategory.GOAL: "Goals",
    ContextCategory.CONSTRAINT: "Constraints",
    ContextCategory.PATTERN: "Patterns",
    ContextCategory.OTHER: "Other",
}


class ContextSource(Enum):
    """
    How an item was learned.

    Each source fixes the starting confidence of a new item, how far a
    reinforcement moves it towards 1.0, and how fast it decays.
    """

    # The user said it
    EXPLICIT = "explicit"

    # Derived by a heuristic over task data
    INFERRED = "inferred"

    # Pulled verbatim out of task text
    EXTRACTED = "extracted"

    @classmethod
    def parse(cls, raw: Union[str, "ContextSource"]) -> "ContextSource":
        """Parse a raw source string, rejecting unknown values."""
        if isinstance(raw, cls):
            return raw
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise InvalidData(f"Unknown context source: {raw!r}")

    @property
    def base_confidence(self) -> float:
        return _SOURCE_PARAMETERS[self][0]

    @property
    def boost_factor(self) -> float:
        return _SOURCE_PARAMETERS[self][1]

    @property
    def half_life_days(self) -> float:
        return _SOURCE_PARAMETERS[self][2]

    @property
    def display_name(self) -> str:
        return _SOURCE_DISPLAY_NAMES[self]


# (base confidence, boost factor, half-life in days)
_SOURCE_PARAMETERS = {
    ContextSource.EXPLICIT: (0.85, 0.15, 180.0),
    ContextSource.INFERRED: (0.30, 0.10, 30.0),
    ContextSource.EXTRACTED: (0.50, 0.05, 60.0),
}

_SOURCE_DISPLAY_NAMES = {
    ContextSource.EXPLICIT: "You told me",
    ContextSource.INFERRED: "Inferred pattern",
    ContextSource.EXTRACTED: "Learned from tasks",
}


def _parse_enum(enum_cls, raw: Any, field_name: str):
    if raw is None or isinstance(raw, enum_cls):
        return raw
    try:
        return enum_cls(raw)
    except ValueError:
        raise InvalidData(f"Unknown {field_name}: {raw!r}")


# ========== Per-category metadata ==========


class Relationship(Enum):
    MANAGER = "manager"
    COLLEAGUE = "colleague"
    REPORT = "report"
    CLIENT = "client"
    FAMILY = "family"
    FRIEND = "friend"
    PARTNER = "partner"
    SERVICE_PROVIDER = "service_provider"
    OTHER = "other"


class Importance(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class ScheduleType(Enum):
    RECURRING_EVENT = "recurring_event"
    PREFERRED_TIME = "preferred_time"
    BLOCKED_TIME = "blocked_time"
    CONSTRAINT = "constraint"


class GoalStatus(Enum):
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


class PatternType(Enum):
    PRODUCTIVITY_PEAK = "productivity_peak"
    COMPLETION_HABIT = "completion_habit"
    TASK_DURATION = "task_duration"
    PROCRASTINATION = "procrastination"
    PREFERRED_TIME = "preferred_time"


@dataclass
class PersonMetadata:
    """Metadata for Person items."""

    relationship: Optional[Relationship] = None
    importance: Optional[Importance] = None
    associated_lists: List[str] = field(default_factory=list)
    last_mentioned_task_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "relationship": self.relationship.value if self.relationship else None,
            "importance": self.importance.value if self.importance else None,
            "associated_lists": self.associated_lists,
            "last_mentioned_task_id": self.last_mentioned_task_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersonMetadata":
        return cls(
            relationship=_parse_enum(Relationship, data.get("relationship"), "relationship"),
            importance=_parse_enum(Importance, data.get("importance"), "importance"),
            associated_lists=list(data.get("associated_lists") or []),
            last_mentioned_task_id=data.get("last_mentioned_task_id"),
        )


@dataclass
class ScheduleMetadata:
    """Metadata for Schedule items."""

    schedule_type: Optional[ScheduleType] = None
    time_reference: Optional[str] = None
    days_of_week: List[int] = field(default_factory=list)
    is_blocking: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schedule_type": self.schedule_type.value if self.schedule_type else None,
            "time_reference": self.time_reference,
            "days_of_week": self.days_of_week,
            "is_blocking": self.is_blocking,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ScheduleMetadata":
        return cls(
            schedule_type=_parse_enum(ScheduleType, data.get("schedule_type"), "schedule type"),
            time_reference=data.get("time_reference"),
            days_of_week=[int(d) for d in data.get("days_of_week") or []],
            is_blocking=bool(data.get("is_blocking", False)),
        )


@dataclass
class GoalMetadata:
    """Metadata for Goal items."""

    status: GoalStatus = GoalStatus.ACTIVE
    target_date: Optional[datetime] = None
    related_lists: List[str] = field(default_factory=list)
    related_keywords: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "target_date": self.target_date.isoformat() if self.target_date else None,
            "related_lists": self.related_lists,
            "related_keywords": self.related_keywords,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GoalMetadata":
        return cls(
            status=_parse_enum(GoalStatus, data.get("status"), "goal status") or GoalStatus.ACTIVE,
            target_date=parse_datetime(data.get("target_date")),
            related_lists=list(data.get("related_lists") or []),
            related_keywords=list(data.get("related_keywords") or []),
        )


@dataclass
class PatternMetadata:
    """
    Metadata for Pattern items.

    Attributes:
        pattern_type: Which behaviour the pattern tracks
        data_points: Number of observations folded into the item
        last_observed: When the pattern was last seen
        hour_distribution: Observation counts keyed by hour of day
        day_distribution: Observation counts keyed by weekday (1 = Sunday)
    """

    pattern_type: Optional[PatternType] = None
    data_points: int = 0
    last_observed: Optional[datetime] = None
    hour_distribution: Dict[int, int] = field(default_factory=dict)
    day_distribution: Dict[int, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pattern_type": self.pattern_type.value if self.pattern_type else None,
            "data_points": self.data_points,
            "last_observed": self.last_observed.isoformat() if self.last_observed else None,
            "hour_distribution": {str(k): v for k, v in self.hour_distribution.items()},
            "day_distribution": {str(k): v for k, v in self.day_distribution.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternMetadata":
        return cls(
            pattern_type=_parse_enum(PatternType, data.get("pattern_type"), "pattern type"),
            data_points=int(data.get("data_points") or 0),
            last_observed=parse_datetime(data.get("last_observed")),
            hour_distribution={int(k): int(v) for k, v in (data.get("hour_distribution") or {}).items()},
            day_distribution={int(k): int(v) for k, v in (data.get("day_distribution") or {}).items()},
        )


@dataclass
class OtherMetadata:
    """String-keyed fallback, reserved for category Other."""

    values: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OtherMetadata":
        return cls(values={str(k): str(v) for k, v in data.items()})


ContextMetadata = Union[PersonMetadata, ScheduleMetadata, GoalMetadata, PatternMetadata, OtherMetadata]

METADATA_TYPES = {
    ContextCategory.PERSON: PersonMetadata,
    ContextCategory.SCHEDULE: ScheduleMetadata,
    ContextCategory.GOAL: GoalMetadata,
    ContextCategory.PATTERN: PatternMetadata,
    ContextCategory.OTHER: OtherMetadata,
}


def validate_metadata(category: ContextCategory, metadata: Optional[ContextMetadata]) -> None:
    """Raise InvalidData if the payload does not belong to the category."""
    if metadata is None:
        return
    expected = METADATA_TYPES.get(category)
    if expected is None:
        raise InvalidData(f"Category '{category.value}' does not take metadata")
    if not isinstance(metadata, expected):
        raise InvalidData(
            f"Category '{category.value}' expects {expected.__name__}, "
            f"got {type(metadata).__name__}"
        )


def merge_metadata(
    stored: Optional[ContextMetadata],
    new: Optional[ContextMetadata],
) -> Optional[ContextMetadata]:
    """
    Overlay the fields a new payload sets onto the stored one.

    A field left at its default in the new payload keeps the stored value.
    """
    if new is None:
        return stored
    if stored is None or type(stored) is not type(new):
        return new
    defaults = type(new)()
    merged = replace(stored)
    for f in fields(new):
        value = getattr(new, f.name)
        if value != getattr(defaults, f.name):
            setattr(merged, f.name, value)
    return merged


def metadata_from_dict(
    category: ContextCategory,
    data: Optional[Dict[str, Any]],
) -> Optional[ContextMetadata]:
    """Decode a stored metadata payload for the given category."""
    if not data:
        return None
    metadata_cls = METADATA_TYPES.get(category)
    if metadata_cls is None:
        raise InvalidData(f"Category '{category.value}' does not take metadata")
    return metadata_cls.from_dict(data)


# ========== Context item ==========


def _count_field(data: Dict[str, Any], name: str) -> int:
    value = data.get(name, 0)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidData(f"Field '{name}' must be a non-negative integer, got {value!r}")
    return value


@dataclass
class ContextItem:
    """
    A single fact about the user.

    Attributes:
        category: Kind of fact
        key: Normalized identifier, unique within the category
        value: Free-text description
        source: How the fact was learned
        confidence: Stored base confidence in [0, 1]
        metadata: Category-specific payload
        created_at: When the item was first observed
        updated_at: When the item was last written or reinforced
        last_accessed_at: When the item was last returned by the ranker
        access_count: Number of ranker retrievals
        reinforcement_count: Number of repeated observations merged in
    """

    category: ContextCategory
    key: str
    value: str
    source: ContextSource
    confidence: Optional[float] = None
    id: Optional[int] = None
    metadata: Optional[ContextMetadata] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    last_accessed_at: Optional[datetime] = None
    access_count: int = 0
    reinforcement_count: int = 0

    def __post_init__(self):
        """Initialize defaults after creation."""
        self.key = normalize_key(self.key)
        if self.confidence is None:
            self.confidence = self.source.base_confidence
        self.confidence = min(1.0, max(0.0, float(self.confidence)))
        if self.created_at is None:
            self.created_at = utc_now()
        if self.updated_at is None:
            self.updated_at = self.created_at

    @property
    def identity(self):
        return (self.category, self.key)

    @property
    def data_points(self) -> int:
        """Observation counter for Pattern items, 0 for everything else."""
        if isinstance(self.metadata, PatternMetadata):
            return self.metadata.data_points
        return 0

    def _days_since(self, moment: datetime, now: Optional[datetime] = None) -> float:
        now = now or utc_now()
        return max(0.0, (now - moment).total_seconds() / SECONDS_PER_DAY)

    def days_since_update(self, now: Optional[datetime] = None) -> int:
        """Whole days since the item was last written."""
        return int(self._days_since(self.updated_at, now))

    def effective_confidence(self, now: Optional[datetime] = None) -> float:
        """
        Stored confidence decayed by time without use.

        Halves every source half-life, measured from the later of the last
        write and the last retrieval, and never drops below a tenth of the
        stored value.
        """
        reference = self.updated_at
        if self.last_accessed_at and self.last_accessed_at > reference:
            reference = self.last_accessed_at
        days = self._days_since(reference, now)
        decay = max(DECAY_FLOOR, 0.5 ** (days / self.source.half_life_days))
        return self.confidence * decay

    def is_stale(self, now: Optional[datetime] = None) -> bool:
        """Low effective confidence and untouched for the staleness window."""
        if self.effective_confidence(now) >= STALE_CONFIDENCE_FLOOR:
            return False
        reference = self.last_accessed_at or self.created_at
        return self._days_since(reference, now) > STALE_WINDOW_DAYS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "id": self.id,
            "category": self.category.value,
            "key": self.key,
            "value": self.value,
            "source": self.source.value,
            "confidence": self.confidence,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "last_accessed_at": self.last_accessed_at.isoformat() if self.last_accessed_at else None,
            "access_count": self.access_count,
            "reinforcement_count": self.reinforcement_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ContextItem":
        """Create from dictionary."""
        if not isinstance(data, dict):
            raise InvalidData(f"Context item must be an object, got {type(data).__name__}")
        for name in ("key", "value"):
            if not isinstance(data.get(name, ""), str):
                raise InvalidData(f"Field '{name}' must be a string")
        confidence = data.get("confidence")
        if confidence is not None and (isinstance(confidence, bool) or not isinstance(confidence, (int, float))):
            raise InvalidData(f"Field 'confidence' must be a number, got {confidence!r}")
        category = ContextCategory.parse(data.get("category", ""))
        return cls(
            id=data.get("id"),
            category=category,
            key=data.get("key", ""),
            value=data.get("value", ""),
            source=ContextSource.parse(data.get("source", "")),
            confidence=confidence,
            metadata=metadata_from_dict(category, data.get("metadata")),
            created_at=parse_datetime(data.get("created_at")),
            updated_at=parse_datetime(data.get("updated_at")),
            last_accessed_at=parse_datetime(data.get("last_accessed_at")),
            access_count=_count_field(data, "access_count"),
            reinforcement_count=_count_field(data, "reinforcement_count"),
        )


@dataclass
class MemoryStats:
    """Statistics about the context memory."""

    total_items: int = 0
    items_by_category: Dict[str, int] = field(default_factory=dict)
    items_by_source: Dict[str, int] = field(default_factory=dict)
    total_size_bytes: int = 0
    oldest_item: Optional[datetime] = None
    newest_item: Optional[datetime] = None
    average_confidence: float = 0.0
    total_access_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "total_items": self.total_items,
            "items_by_category": self.items_by_category,
            "items_by_source": self.items_by_source,
            "total_size_bytes": self.total_size_bytes,
            "oldest_item": self.oldest_item.isoformat() if self.oldest_item else None,
            "newest_item": self.newest_item.isoformat() if self.newest_item else None,
            "average_confidence": self.average_confidence,
            "total_access_count": self.total_access_count,
        }
