"""
Tests for retention maintenance.
"""

import threading
import pytest
from unittest.mock import MagicMock, patch

from context_memory.errors import DeleteFailed
from context_memory.memory import (
    ContextCategory,
    MaintenanceReport,
    PatternMetadata,
    PatternType,
    RetentionPolicy,
)
from context_memory.memory.types import utc_now

from conftest import NOW, days_ago, insert_items, make_item


def pattern(key, data_points, age_days, confidence=0.9):
    return make_item(
        "pattern", key, source="inferred", confidence=confidence, age_days=age_days,
        metadata=PatternMetadata(pattern_type=PatternType.PRODUCTIVITY_PEAK, data_points=data_points),
    )


def current_items(count):
    """Items written just now, so nothing about them is stale."""
    moment = utc_now()
    return [
        make_item("other", f"note_{i}", created_at=moment, updated_at=moment)
        for i in range(count)
    ]


class TestMaintenanceReport:
    """Test the report dataclass."""

    def test_total_removed(self):
        report = MaintenanceReport(stale_removed=2, weak_patterns_removed=1, excess_removed=3)

        assert report.total_removed == 6
        assert report.to_dict()["total_removed"] == 6


class TestFullMaintenance:
    """Test the three-pass sweep."""

    def test_removes_stale_items(self, store, storage):
        """Low confidence untouched for 95 days goes; accessed yesterday stays."""
        insert_items(storage, [
            make_item("other", "forgotten", confidence=0.05, age_days=200, last_accessed_at=days_ago(95)),
            make_item("other", "recent", confidence=0.05, age_days=200, last_accessed_at=days_ago(1)),
        ])

        report = RetentionPolicy(store).run_full_maintenance(now=NOW)

        assert report.stale_removed == 1
        assert store.fetch("other", "forgotten") is None
        assert store.fetch("other", "recent") is not None

    def test_removes_weak_patterns(self, store, storage):
        """Few observations and a month old goes, whatever the confidence."""
        insert_items(storage, [
            pattern("completion_hour_3", data_points=2, age_days=31),
            pattern("completion_hour_9", data_points=5, age_days=31),
            pattern("completion_hour_14", data_points=2, age_days=5),
        ])

        report = RetentionPolicy(store).run_full_maintenance(now=NOW)

        assert report.weak_patterns_removed == 1
        assert store.fetch("pattern", "completion_hour_3") is None
        assert store.fetch("pattern", "completion_hour_9") is not None
        assert store.fetch("pattern", "completion_hour_14") is not None

    def test_weak_pattern_thresholds_configurable(self, store, storage):
        storage.insert(pattern("completion_hour_9", data_points=5, age_days=31))

        policy = RetentionPolicy(store, weak_pattern_min_data_points=10)
        report = policy.run_full_maintenance(now=NOW)

        assert report.weak_patterns_removed == 1

    def test_only_patterns_are_weak(self, store, storage):
        storage.insert(make_item("goal", "fitness", confidence=0.9, age_days=31))

        report = RetentionPolicy(store).run_full_maintenance(now=NOW)

        assert report.total_removed == 0

    def test_trims_excess_by_effective_confidence(self, store, storage):
        """Over capacity, the lowest effective confidence goes first."""
        items = [make_item("other", f"note_{i}", confidence=0.9) for i in range(100)]
        # Same stored confidence, but the inferred ones have decayed
        items += [
            make_item("goal", f"old_{i}", source="inferred", confidence=0.9, age_days=60)
            for i in range(3)
        ]
        insert_items(storage, items)

        report = RetentionPolicy(store).run_full_maintenance(now=NOW)

        assert report.excess_removed == 3
        assert store.count() == 100
        assert store.fetch_all([ContextCategory.GOAL]) == []

    def test_cancel_before_start(self, store, storage):
        storage.insert(make_item("other", "forgotten", confidence=0.05, age_days=200))
        cancel = threading.Event()
        cancel.set()

        report = RetentionPolicy(store).run_full_maintenance(cancel_event=cancel, now=NOW)

        assert report.cancelled is True
        assert report.total_removed == 0
        assert store.count() == 1

    def test_cancel_between_passes(self, store, storage):
        """Passes that finished before cancellation stay applied."""
        insert_items(storage, [
            make_item("other", "forgotten", confidence=0.05, age_days=200),
            pattern("completion_hour_3", data_points=1, age_days=40),
        ])
        cancel = MagicMock()
        cancel.is_set.side_effect = [False, True]

        report = RetentionPolicy(store).run_full_maintenance(cancel_event=cancel, now=NOW)

        assert report.cancelled is True
        assert report.stale_removed == 1
        assert report.weak_patterns_removed == 0
        assert store.fetch("pattern", "completion_hour_3") is not None

    def test_failed_delete_is_skipped(self, store, storage):
        """One undeletable item does not stop the sweep."""
        insert_items(storage, [
            make_item("other", "stuck", confidence=0.05, age_days=200),
            make_item("other", "forgotten", confidence=0.05, age_days=200),
        ])
        real_delete = store.delete

        def flaky_delete(item):
            if item.key == "stuck":
                raise DeleteFailed("database is locked")
            return real_delete(item)

        with patch.object(store, "delete", side_effect=flaky_delete):
            report = RetentionPolicy(store).run_full_maintenance(now=NOW)

        assert report.stale_removed == 1
        assert report.failures == ["other/stuck"]
        assert store.fetch("other", "stuck") is not None

    def test_records_metrics(self, store, storage, metrics):
        storage.insert(make_item("other", "forgotten", confidence=0.05, age_days=200))

        RetentionPolicy(store).run_full_maintenance(now=NOW)

        assert metrics.get_metric("items_evicted_total").get_sum({"reason": "stale"}) == 1
        assert metrics.get_metric("items").get_current_value() == 0
        assert len(metrics.get_metric("maintenance_duration_seconds").values) == 1


class TestLightMaintenance:
    """Test the on-activation check."""

    def test_noop_under_capacity(self, store, storage):
        insert_items(storage, current_items(50))

        with patch.object(store, "delete") as delete:
            report = RetentionPolicy(store).run_light_maintenance()

        assert report is None
        delete.assert_not_called()
        assert store.count() == 50

    def test_noop_at_capacity(self, store, storage):
        insert_items(storage, current_items(100))

        assert RetentionPolicy(store).run_light_maintenance() is None

    def test_sweeps_over_capacity(self, store, storage):
        insert_items(storage, current_items(101))

        report = RetentionPolicy(store).run_light_maintenance()

        assert report is not None
        assert report.excess_removed == 1
        assert store.count() == 100
