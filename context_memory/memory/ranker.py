"""
Relevance ranking of context items for prompt injection.

Every item the ranker returns is marked accessed, which keeps items that
are actually used fresh and lets unused ones decay towards eviction.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Tuple

from ..errors import InvalidData
from .store import ContextStore
from .types import ContextCategory, ContextItem, utc_now


logger = logging.getLogger(__name__)


DEFAULT_MAX_ITEMS = 12
DEFAULT_MIN_CONFIDENCE = 0.3

KEY_MATCH_BONUS = 1.0
VALUE_WORD_BONUS = 0.3


class Intent(str, Enum):
    """Downstream uses that pull context."""
    CREATE_TASK = "create_task"
    PLAN_DAY = "plan_day"
    PRIORITIZE = "prioritize"
    QUERY = "query"
    GENERAL = "general"


@dataclass(frozen=True)
class IntentPolicy:
    """Which categories an intent reads, and how much of them."""
    categories: Optional[Tuple[ContextCategory, ...]]
    min_confidence: float
    limit: int


INTENT_POLICIES: Dict[Intent, IntentPolicy] = {
    Intent.CREATE_TASK: IntentPolicy(
        (ContextCategory.PERSON, ContextCategory.GOAL), 0.5, 5,
    ),
    Intent.PLAN_DAY: IntentPolicy(
        (ContextCategory.SCHEDULE, ContextCategory.CONSTRAINT,
         ContextCategory.GOAL, ContextCategory.PATTERN), 0.5, 10,
    ),
    Intent.PRIORITIZE: IntentPolicy(
        (ContextCategory.GOAL, ContextCategory.PERSON), 0.5, 8,
    ),
    Intent.QUERY: IntentPolicy(
        (ContextCategory.PERSON, ContextCategory.GOAL), 0.3, 5,
    ),
    Intent.GENERAL: IntentPolicy(None, 0.5, 12),
}


def relevance_score(item: ContextItem, query_words: set, now: Optional[datetime] = None) -> float:
    """Effective confidence plus bonuses for a key hit and shared value words."""
    score = item.effective_confidence(now)
    if item.key in query_words:
        score += KEY_MATCH_BONUS
    value_words = set(item.value.lower().split())
    score += VALUE_WORD_BONUS * len(query_words & value_words)
    return score


def format_for_prompt(items: Sequence[ContextItem]) -> str:
    """Render items as "- key: value" lines; no items renders as ""."""
    return "\n".join(f"- {item.key}: {item.value}" for item in items)


class RelevanceRanker:
    """Selects the context worth putting in front of a model."""

    def __init__(self, store: ContextStore):
        self.store = store

    def relevant(
        self,
        query: Optional[str] = None,
        max_items: int = DEFAULT_MAX_ITEMS,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        now: Optional[datetime] = None,
    ) -> List[ContextItem]:
        """
        Rank items against a query and mark the winners accessed.

        Args:
            query: Free text; empty means "best items overall"
            max_items: Maximum number of items to return
            min_confidence: Effective confidence floor
            now: Reference time for decay and the access timestamp

        Returns:
            Items, most relevant first

        Raises:
            InvalidData: If max_items is negative
        """
        if max_items < 0:
            raise InvalidData(f"max_items must not be negative, got {max_items}")
        now = now or utc_now()
        with self.store.lock:
            candidates = self.store.fetch_all(min_confidence=min_confidence, now=now)

            query_words = set((query or "").lower().split())
            if query_words:
                scored = [(relevance_score(item, query_words, now), item) for item in candidates]
            else:
                scored = [(item.effective_confidence(now), item) for item in candidates]
            scored.sort(key=lambda pair: pair[0], reverse=True)
            selected = [item for _, item in scored[:max_items]]

            self.store.mark_accessed(selected, now=now)

        logger.debug(f"Ranked {len(candidates)} items, returned {len(selected)} for query {query!r}")
        return selected

    def relevant_for_intent(
        self,
        intent: Intent,
        now: Optional[datetime] = None,
    ) -> List[ContextItem]:
        """Fetch context through the fixed policy for an intent."""
        try:
            policy = INTENT_POLICIES[Intent(intent)]
        except ValueError:
            raise InvalidData(f"Unknown intent: {intent!r}")
        now = now or utc_now()
        with self.store.lock:
            items = self.store.fetch_all(
                policy.categories,
                min_confidence=policy.min_confidence,
                now=now,
            )
            items.sort(key=lambda i: i.effective_confidence(now), reverse=True)
            selected = items[:policy.limit]
            self.store.mark_accessed(selected, now=now)
        return selected

    format_for_prompt = staticmethod(format_for_prompt)
