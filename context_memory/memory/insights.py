"""
Insight aggregation over learned patterns, goals, people and lists.

Read-only: nothing here writes to the store or marks items accessed.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from ..errors import ContextMemoryError
from .store import ContextStore
from .types import ContextCategory, PatternMetadata


logger = logging.getLogger(__name__)


COMPLETION_HOUR_PREFIX = "completion_hour_"
COMPLETION_DAY_PREFIX = "completion_day_"
PREFERRED_TIME_PREFIX = "preferred_time_"
LIST_USAGE_PREFIXES = ("list_usage_", "list_")

# Weekday numbering 1 = Sunday ... 7 = Saturday
WEEKDAY_NAMES = ["", "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

PATTERN_MIN_CONFIDENCE = 0.2
GOAL_MIN_CONFIDENCE = 0.3
PERSON_MIN_CONFIDENCE = 0.3
PREFERENCE_MIN_CONFIDENCE = 0.2

INSIGHT_MIN_COMPLETIONS = 3
SUMMARY_MIN_COMPLETIONS = 2


def confidence_from_data_points(data_points: int) -> float:
    """More observations, more confidence, capped below certainty."""
    return min(data_points * 0.15, 0.95)


def format_hour(hour: int) -> str:
    """Render 0-23 as "12 AM" ... "11 PM"."""
    suffix = "AM" if hour < 12 else "PM"
    display = hour % 12 or 12
    return f"{display} {suffix}"


@dataclass
class ProductivityPeak:
    hour: int
    completions: int
    confidence: float


@dataclass
class ActiveDay:
    weekday: int
    name: str
    completions: int


@dataclass
class PreferredTime:
    category: str
    display_name: str
    count: int


@dataclass
class UserGoal:
    key: str
    description: str
    confidence: float
    reinforcement_count: int
    last_reinforced: datetime


@dataclass
class FrequentPerson:
    name: str
    relationship: str
    confidence: float
    reinforcement_count: int


@dataclass
class ListPreference:
    list_name: str
    usage_count: int


class InsightType(str, Enum):
    PRODUCTIVITY_PEAK = "productivity_peak"
    ACTIVE_DAYS = "active_days"
    GOAL_FOCUS = "goal_focus"
    FREQUENT_COLLABORATOR = "frequent_collaborator"


@dataclass
class PatternInsight:
    """A human-readable insight with a confidence derived from its evidence."""

    type: InsightType
    title: str
    description: str
    confidence: float

    def to_dict(self) -> Dict[str, object]:
        return {
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
        }


def _data_points(metadata) -> int:
    if isinstance(metadata, PatternMetadata) and metadata.data_points > 0:
        return metadata.data_points
    return 1


class InsightAggregator:
    """Synthesizes insights and a prompt summary from the store."""

    def __init__(self, store: ContextStore):
        self.store = store

    def _sum_pattern_points(self, prefix: str, now: Optional[datetime] = None) -> Dict[str, int]:
        totals: Dict[str, int] = defaultdict(int)
        patterns = self.store.fetch_all(
            [ContextCategory.PATTERN], min_confidence=PATTERN_MIN_CONFIDENCE, now=now
        )
        for item in patterns:
            if item.key.startswith(prefix):
                totals[item.key[len(prefix):]] += _data_points(item.metadata)
        return totals

    def get_productivity_peaks(self, now: Optional[datetime] = None) -> List[ProductivityPeak]:
        """Top five completion hours by summed data points."""
        hourly: Dict[int, int] = defaultdict(int)
        for suffix, points in self._sum_pattern_points(COMPLETION_HOUR_PREFIX, now).items():
            if suffix.isdigit() and 0 <= int(suffix) <= 23:
                hourly[int(suffix)] += points

        ranked = sorted(hourly.items(), key=lambda kv: kv[1], reverse=True)[:5]
        return [
            ProductivityPeak(hour=h, completions=c, confidence=confidence_from_data_points(c))
            for h, c in ranked
        ]

    def get_active_days(self, now: Optional[datetime] = None) -> List[ActiveDay]:
        """Weekdays ranked by summed completion data points."""
        daily: Dict[int, int] = defaultdict(int)
        for suffix, points in self._sum_pattern_points(COMPLETION_DAY_PREFIX, now).items():
            if suffix.isdigit() and 1 <= int(suffix) <= 7:
                daily[int(suffix)] += points

        ranked = sorted(daily.items(), key=lambda kv: kv[1], reverse=True)
        return [ActiveDay(weekday=d, name=WEEKDAY_NAMES[d], completions=c) for d, c in ranked]

    def get_preferred_times(self, now: Optional[datetime] = None) -> List[PreferredTime]:
        totals = self._sum_pattern_points(PREFERRED_TIME_PREFIX, now)
        ranked = sorted(totals.items(), key=lambda kv: kv[1], reverse=True)
        return [
            PreferredTime(category=c, display_name=c.replace("_", " ").title(), count=n)
            for c, n in ranked
        ]

    def get_active_goals(self, now: Optional[datetime] = None) -> List[UserGoal]:
        goals = self.store.fetch_all(
            [ContextCategory.GOAL], min_confidence=GOAL_MIN_CONFIDENCE, now=now
        )
        result = [
            UserGoal(
                key=g.key,
                description=g.value,
                confidence=g.effective_confidence(now),
                reinforcement_count=g.reinforcement_count,
                last_reinforced=g.updated_at,
            )
            for g in goals
        ]
        result.sort(key=lambda g: g.confidence, reverse=True)
        return result

    def get_frequent_people(self, now: Optional[datetime] = None) -> List[FrequentPerson]:
        people = self.store.fetch_all(
            [ContextCategory.PERSON], min_confidence=PERSON_MIN_CONFIDENCE, now=now
        )
        result = []
        for person in people:
            relationship = getattr(person.metadata, "relationship", None)
            result.append(FrequentPerson(
                name=person.value,
                relationship=relationship.value if relationship else "other",
                confidence=person.effective_confidence(now),
                reinforcement_count=person.reinforcement_count,
            ))
        result.sort(key=lambda p: p.reinforcement_count, reverse=True)
        return result

    def get_list_preferences(self, now: Optional[datetime] = None) -> List[ListPreference]:
        preferences = self.store.fetch_all(
            [ContextCategory.PREFERENCE], min_confidence=PREFERENCE_MIN_CONFIDENCE, now=now
        )
        usage: Dict[str, int] = defaultdict(int)
        for pref in preferences:
            for prefix in LIST_USAGE_PREFIXES:
                if pref.key.startswith(prefix):
                    usage[pref.key[len(prefix):]] += pref.reinforcement_count + 1
                    break

        ranked = sorted(usage.items(), key=lambda kv: kv[1], reverse=True)
        return [ListPreference(list_name=name.title(), usage_count=n) for name, n in ranked]

    def _safe(self, getter, now: Optional[datetime]) -> list:
        """Insights are best effort; a failing read yields nothing."""
        try:
            return getter(now)
        except ContextMemoryError as e:
            logger.warning(f"Skipping {getter.__name__}: {e}")
            return []

    def generate_insights(self, now: Optional[datetime] = None) -> List[PatternInsight]:
        """
        Build natural-language insights, most confident first.

        Each insight's confidence comes from how much evidence backs it,
        not from the stored confidence of the underlying items.
        """
        insights: List[PatternInsight] = []

        peaks = self._safe(self.get_productivity_peaks, now)
        if peaks and peaks[0].completions >= INSIGHT_MIN_COMPLETIONS:
            top = peaks[0]
            insights.append(PatternInsight(
                type=InsightType.PRODUCTIVITY_PEAK,
                title="Peak Productivity Time",
                description=(
                    f"You complete most tasks around {format_hour(top.hour)}. "
                    "Consider scheduling important work then."
                ),
                confidence=top.confidence,
            ))

        days = self._safe(self.get_active_days, now)
        if days and days[0].completions >= INSIGHT_MIN_COMPLETIONS:
            top_day = days[0]
            insights.append(PatternInsight(
                type=InsightType.ACTIVE_DAYS,
                title="Most Active Day",
                description=(
                    f"{top_day.name} is your most productive day "
                    f"with {top_day.completions} completions."
                ),
                confidence=confidence_from_data_points(top_day.completions),
            ))

        goals = self._safe(self.get_active_goals, now)
        if len(goals) >= 2:
            names = " and ".join(g.key.title() for g in goals[:2])
            insights.append(PatternInsight(
                type=InsightType.GOAL_FOCUS,
                title="Current Focus Areas",
                description=f"Your main focus areas are {names}.",
                confidence=confidence_from_data_points(goals[0].reinforcement_count + 1),
            ))

        people = self._safe(self.get_frequent_people, now)
        if people and people[0].reinforcement_count >= 2:
            person = people[0]
            insights.append(PatternInsight(
                type=InsightType.FREQUENT_COLLABORATOR,
                title="Frequent Collaborator",
                description=(
                    f"You often work with {person.name}. "
                    "Consider creating a shared list or project."
                ),
                confidence=confidence_from_data_points(person.reinforcement_count + 1),
            ))

        insights.sort(key=lambda i: i.confidence, reverse=True)
        return insights

    def prompt_summary(self, now: Optional[datetime] = None) -> str:
        """One line for a system prompt: top peak, top day, top two goals."""
        parts = []

        peaks = self._safe(self.get_productivity_peaks, now)
        if peaks and peaks[0].completions >= SUMMARY_MIN_COMPLETIONS:
            parts.append(f"Most productive around {format_hour(peaks[0].hour)}")

        days = self._safe(self.get_active_days, now)
        if days and days[0].completions >= SUMMARY_MIN_COMPLETIONS:
            parts.append(f"Most active on {days[0].name}s")

        goals = self._safe(self.get_active_goals, now)
        if goals:
            parts.append(f"Focus areas: {', '.join(g.key for g in goals[:2])}")

        return "; ".join(parts)
