"""
Tests for insight aggregation.
"""

import pytest
from unittest.mock import patch

from context_memory.errors import FetchFailed
from context_memory.memory import (
    InsightAggregator,
    InsightType,
    PatternMetadata,
    PatternType,
    PersonMetadata,
    Relationship,
)
from context_memory.memory.insights import confidence_from_data_points, format_hour


@pytest.fixture
def insights(store):
    return InsightAggregator(store)


def observe(store, key, data_points, pattern_type=PatternType.PRODUCTIVITY_PEAK):
    """Upsert a pattern whose counter now stands at data_points."""
    return store.upsert(
        "pattern", key, f"Observed {key}", "inferred",
        metadata=PatternMetadata(pattern_type=pattern_type, data_points=data_points),
    )


class TestHelpers:
    """Test formatting helpers."""

    @pytest.mark.parametrize("hour,expected", [
        (0, "12 AM"), (9, "9 AM"), (12, "12 PM"), (14, "2 PM"), (23, "11 PM"),
    ])
    def test_format_hour(self, hour, expected):
        assert format_hour(hour) == expected

    def test_confidence_from_data_points(self):
        assert confidence_from_data_points(2) == pytest.approx(0.3)
        assert confidence_from_data_points(20) == 0.95


class TestAggregations:
    """Test the per-kind aggregations."""

    def test_productivity_peaks(self, store, insights):
        """Five reinforcements reaching 7 data points outrank two reaching 2."""
        for points in (1, 2, 4, 6, 7):
            observe(store, "completion_hour_9", points)
        for points in (1, 2):
            observe(store, "completion_hour_14", points)

        peaks = insights.get_productivity_peaks()

        assert [p.hour for p in peaks] == [9, 14]
        assert peaks[0].completions == 7
        assert peaks[0].confidence == 0.95
        assert peaks[1].confidence == pytest.approx(0.3)

    def test_peaks_capped_at_five(self, store, insights):
        for hour in range(8):
            observe(store, f"completion_hour_{hour}", hour + 1)

        peaks = insights.get_productivity_peaks()

        assert [p.hour for p in peaks] == [7, 6, 5, 4, 3]

    def test_active_days(self, store, insights):
        observe(store, "completion_day_2", 4, PatternType.COMPLETION_HABIT)
        observe(store, "completion_day_6", 1, PatternType.COMPLETION_HABIT)

        days = insights.get_active_days()

        assert [(d.weekday, d.name, d.completions) for d in days] == [
            (2, "Monday", 4),
            (6, "Friday", 1),
        ]

    def test_preferred_times(self, store, insights):
        observe(store, "preferred_time_early_morning", 3, PatternType.PREFERRED_TIME)
        observe(store, "preferred_time_evening", 1, PatternType.PREFERRED_TIME)

        times = insights.get_preferred_times()

        assert times[0].category == "early_morning"
        assert times[0].display_name == "Early Morning"
        assert times[0].count == 3

    def test_active_goals(self, store, insights):
        store.upsert("goal", "career", "Get promoted", "explicit")
        store.upsert("goal", "fitness", "Run a 10k", "explicit")
        store.upsert("goal", "fitness", "Run a 10k", "explicit")

        goals = insights.get_active_goals()

        assert [g.key for g in goals] == ["fitness", "career"]
        assert goals[0].reinforcement_count == 1

    def test_frequent_people(self, store, insights):
        store.upsert(
            "person", "sarah", "Sarah", "explicit",
            metadata=PersonMetadata(relationship=Relationship.MANAGER),
        )
        for _ in range(3):
            store.upsert("person", "john", "John", "extracted")

        people = insights.get_frequent_people()

        assert [p.name for p in people] == ["John", "Sarah"]
        assert people[0].relationship == "other"
        assert people[1].relationship == "manager"

    def test_list_preferences(self, store, insights):
        for _ in range(3):
            store.upsert("preference", "list_usage_work", "Uses 'Work' list", "inferred")
        store.upsert("preference", "list_usage_home", "Uses 'Home' list", "inferred")
        store.upsert("preference", "dark_mode", "Likes dark mode", "explicit")

        lists = insights.get_list_preferences()

        assert [(l.list_name, l.usage_count) for l in lists] == [("Work", 3), ("Home", 1)]


class TestGenerateInsights:
    """Test insight generation and the prompt summary."""

    def seed(self, store):
        observe(store, "completion_hour_9", 5)
        observe(store, "completion_day_2", 4, PatternType.COMPLETION_HABIT)
        store.upsert("goal", "career", "Get promoted", "explicit")
        store.upsert("goal", "fitness", "Run a 10k", "explicit")
        store.upsert("goal", "fitness", "Run a 10k", "explicit")
        for _ in range(3):
            store.upsert("person", "john", "John", "extracted")

    def test_empty_store(self, insights):
        assert insights.generate_insights() == []
        assert insights.prompt_summary() == ""

    def test_insights(self, store, insights):
        self.seed(store)

        generated = insights.generate_insights()
        by_type = {i.type: i for i in generated}

        assert set(by_type) == {
            InsightType.PRODUCTIVITY_PEAK,
            InsightType.ACTIVE_DAYS,
            InsightType.GOAL_FOCUS,
            InsightType.FREQUENT_COLLABORATOR,
        }
        assert "9 AM" in by_type[InsightType.PRODUCTIVITY_PEAK].description
        assert by_type[InsightType.PRODUCTIVITY_PEAK].confidence == pytest.approx(0.75)
        assert "Monday" in by_type[InsightType.ACTIVE_DAYS].description
        assert by_type[InsightType.GOAL_FOCUS].description == "Your main focus areas are Fitness and Career."
        assert "John" in by_type[InsightType.FREQUENT_COLLABORATOR].description
        confidences = [i.confidence for i in generated]
        assert confidences == sorted(confidences, reverse=True)

    def test_thresholds(self, store, insights):
        """Thin evidence yields no insight."""
        observe(store, "completion_hour_9", 2)
        store.upsert("goal", "fitness", "Run a 10k", "explicit")
        store.upsert("person", "john", "John", "extracted")

        assert insights.generate_insights() == []

    def test_prompt_summary(self, store, insights):
        self.seed(store)

        assert insights.prompt_summary() == (
            "Most productive around 9 AM; Most active on Mondays; Focus areas: fitness, career"
        )

    def test_read_only(self, store, insights):
        self.seed(store)

        insights.generate_insights()
        insights.prompt_summary()

        assert all(i.access_count == 0 for i in store.fetch_all())

    def test_failed_reads_yield_nothing(self, store, insights):
        self.seed(store)

        with patch.object(store, "fetch_all", side_effect=FetchFailed("disk I/O error")):
            assert insights.generate_insights() == []
            assert insights.prompt_summary() == ""
