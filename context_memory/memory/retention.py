"""
Retention policy for the context store.

Full maintenance runs three ordered passes: stale items, weak patterns,
then excess items by effective confidence. Each pass is best effort; a
deletion that fails is logged and the sweep moves on.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from ..errors import ContextMemoryError
from ..observability.metrics import MetricsCollector, Timer
from .store import ContextStore
from .types import ContextCategory, ContextItem, utc_now


logger = logging.getLogger(__name__)


# Pattern items with fewer observations than this are noise once old
WEAK_PATTERN_MIN_DATA_POINTS = 3
WEAK_PATTERN_MAX_AGE_DAYS = 30


@dataclass
class MaintenanceReport:
    """Outcome of a maintenance run."""

    stale_removed: int = 0
    weak_patterns_removed: int = 0
    excess_removed: int = 0
    failures: List[str] = field(default_factory=list)
    cancelled: bool = False
    duration_seconds: float = 0.0

    @property
    def total_removed(self) -> int:
        return self.stale_removed + self.weak_patterns_removed + self.excess_removed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stale_removed": self.stale_removed,
            "weak_patterns_removed": self.weak_patterns_removed,
            "excess_removed": self.excess_removed,
            "total_removed": self.total_removed,
            "failures": self.failures,
            "cancelled": self.cancelled,
            "duration_seconds": self.duration_seconds,
        }


class RetentionPolicy:
    """
    Maintenance engine over a ContextStore.

    Usage:
        policy = RetentionPolicy(store)

        # daily, from a background scheduler
        report = policy.run_full_maintenance(cancel_event=deadline_event)

        # on every foreground activation
        policy.run_light_maintenance()
    """

    def __init__(
        self,
        store: ContextStore,
        metrics: Optional[MetricsCollector] = None,
        weak_pattern_min_data_points: int = WEAK_PATTERN_MIN_DATA_POINTS,
        weak_pattern_max_age_days: int = WEAK_PATTERN_MAX_AGE_DAYS,
    ):
        self.store = store
        self.metrics = metrics or store.metrics
        self.weak_pattern_min_data_points = weak_pattern_min_data_points
        self.weak_pattern_max_age_days = weak_pattern_max_age_days

    def _is_weak_pattern(self, item: ContextItem, now: datetime) -> bool:
        return (
            item.category == ContextCategory.PATTERN
            and item.data_points < self.weak_pattern_min_data_points
            and item.days_since_update(now) > self.weak_pattern_max_age_days
        )

    def _remove(self, items: List[ContextItem], reason: str, report: MaintenanceReport) -> int:
        """Delete each item, skipping the ones the backend refuses."""
        removed = 0
        for item in items:
            try:
                self.store.delete(item)
            except ContextMemoryError as e:
                logger.warning(f"Retention ({reason}) could not delete {item.key}: {e}")
                report.failures.append(f"{item.category.value}/{item.key}")
                continue
            removed += 1
            self.metrics.increment_counter("items_evicted_total", labels={"reason": reason})
        return removed

    def _prune(
        self,
        predicate: Callable[[ContextItem], bool],
        reason: str,
        report: MaintenanceReport,
    ) -> int:
        victims = [item for item in self.store.fetch_all() if predicate(item)]
        removed = self._remove(victims, reason, report)
        if removed:
            logger.info(f"Pruned {removed} {reason} context items")
        return removed

    def _trim_excess(self, now: datetime, report: MaintenanceReport) -> int:
        items = self.store.fetch_all()
        excess = len(items) - self.store.max_items
        if excess <= 0:
            return 0
        items.sort(key=lambda i: i.effective_confidence(now))
        removed = self._remove(items[:excess], "excess", report)
        logger.info(f"Trimmed {removed} context items above capacity {self.store.max_items}")
        return removed

    def run_full_maintenance(
        self,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> MaintenanceReport:
        """
        Run the three retention passes in order.

        Args:
            cancel_event: Checked before each pass; when set, the run stops
                and the report is marked cancelled. Completed passes stay applied.
            now: Reference time for decay and ages

        Returns:
            A MaintenanceReport of what was removed
        """
        now = now or utc_now()
        report = MaintenanceReport()
        started = time.perf_counter()

        passes = [
            ("stale_removed", lambda: self._prune(lambda i: i.is_stale(now), "stale", report)),
            ("weak_patterns_removed", lambda: self._prune(
                lambda i: self._is_weak_pattern(i, now), "weak_pattern", report
            )),
            ("excess_removed", lambda: self._trim_excess(now, report)),
        ]

        with Timer(self.metrics, "maintenance_duration_seconds"):
            with self.store.lock:
                for attribute, run_pass in passes:
                    if cancel_event is not None and cancel_event.is_set():
                        report.cancelled = True
                        logger.info(f"Maintenance cancelled before {attribute.replace('_', ' ')}")
                        break
                    setattr(report, attribute, run_pass())

                self.metrics.set_gauge("items", self.store.count())

        report.duration_seconds = time.perf_counter() - started
        logger.info(
            f"Maintenance removed {report.total_removed} items "
            f"(stale={report.stale_removed}, weak={report.weak_patterns_removed}, "
            f"excess={report.excess_removed}, failures={len(report.failures)})"
        )
        return report

    def run_light_maintenance(self) -> Optional[MaintenanceReport]:
        """Run full maintenance only if the store is over capacity."""
        count = self.store.count()
        if count <= self.store.max_items:
            logger.debug(f"Light maintenance skipped: {count} items")
            return None
        logger.info(f"Store holds {count} items, running full maintenance")
        return self.run_full_maintenance()
