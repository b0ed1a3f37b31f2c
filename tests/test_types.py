"""
Tests for context item types.
"""

import pytest
from datetime import datetime, timezone

from context_memory.errors import InvalidData
from context_memory.memory.types import (
    ContextCategory,
    ContextItem,
    ContextSource,
    GoalMetadata,
    GoalStatus,
    OtherMetadata,
    PatternMetadata,
    PatternType,
    PersonMetadata,
    Relationship,
    ScheduleMetadata,
    ScheduleType,
    merge_metadata,
    metadata_from_dict,
    parse_datetime,
    validate_metadata,
)

from conftest import NOW, days_ago, make_item


class TestEnums:
    """Test category and source parsing."""

    def test_parse_category(self):
        """Raw strings parse case-insensitively."""
        assert ContextCategory.parse("person") == ContextCategory.PERSON
        assert ContextCategory.parse(" Goal ") == ContextCategory.GOAL
        assert ContextCategory.parse(ContextCategory.OTHER) == ContextCategory.OTHER

    def test_parse_unknown_category(self):
        """Unknown categories are rejected, never defaulted."""
        with pytest.raises(InvalidData):
            ContextCategory.parse("hobby")

    def test_parse_unknown_source(self):
        with pytest.raises(InvalidData):
            ContextSource.parse("guessed")

    def test_source_parameters(self):
        """Explicit starts highest, boosts most and decays slowest."""
        assert ContextSource.EXPLICIT.base_confidence == 0.85
        assert ContextSource.EXTRACTED.base_confidence == 0.50
        assert ContextSource.INFERRED.base_confidence == 0.30

        assert (
            ContextSource.EXPLICIT.boost_factor
            > ContextSource.INFERRED.boost_factor
            > ContextSource.EXTRACTED.boost_factor
        )
        assert (
            ContextSource.EXPLICIT.half_life_days
            > ContextSource.EXTRACTED.half_life_days
            > ContextSource.INFERRED.half_life_days
        )

    def test_display_names(self):
        assert ContextCategory.PERSON.display_name == "People"
        assert ContextSource.EXPLICIT.display_name == "You told me"


class TestContextItem:
    """Test ContextItem defaults and scoring."""

    def test_defaults(self):
        """Key is normalized and confidence starts at the source base."""
        item = ContextItem(
            category=ContextCategory.PERSON,
            key="  John ",
            value="My manager",
            source=ContextSource.EXPLICIT,
        )

        assert item.key == "john"
        assert item.confidence == 0.85
        assert item.created_at is not None
        assert item.updated_at == item.created_at
        assert item.last_accessed_at is None
        assert item.access_count == 0
        assert item.reinforcement_count == 0

    def test_confidence_is_clamped(self):
        high = make_item(ContextCategory.OTHER, "a", confidence=1.7)
        low = make_item(ContextCategory.OTHER, "b", confidence=-0.2)

        assert high.confidence == 1.0
        assert low.confidence == 0.0

    def test_effective_confidence_fresh(self):
        """No time elapsed means no decay."""
        item = make_item(ContextCategory.GOAL, "fitness", confidence=0.8)
        assert item.effective_confidence(NOW) == pytest.approx(0.8)

    def test_effective_confidence_one_half_life(self):
        """Confidence halves after one source half-life."""
        item = make_item(ContextCategory.GOAL, "fitness", source="explicit", confidence=0.8, age_days=180)
        assert item.effective_confidence(NOW) == pytest.approx(0.4)

    def test_effective_confidence_floor(self):
        """Decay never takes more than nine tenths away."""
        item = make_item(ContextCategory.GOAL, "fitness", source="inferred", confidence=0.6, age_days=3650)
        assert item.effective_confidence(NOW) == pytest.approx(0.06)

    def test_access_resets_decay_clock(self):
        """Decay is measured from the later of update and access."""
        item = make_item(
            ContextCategory.GOAL, "fitness", source="inferred", confidence=0.6,
            age_days=60, last_accessed_at=days_ago(0),
        )
        assert item.effective_confidence(NOW) == pytest.approx(0.6)

    def test_days_since_update(self):
        item = make_item(ContextCategory.OTHER, "x", age_days=31.5)
        assert item.days_since_update(NOW) == 31

    def test_is_stale(self):
        """Low confidence and not accessed for 95 days is stale."""
        item = make_item(
            ContextCategory.OTHER, "old", confidence=0.05,
            age_days=200, last_accessed_at=days_ago(95),
        )
        assert item.is_stale(NOW)

    def test_recently_accessed_is_not_stale(self):
        item = make_item(
            ContextCategory.OTHER, "old", confidence=0.05,
            age_days=200, last_accessed_at=days_ago(1),
        )
        assert not item.is_stale(NOW)

    def test_confident_item_is_not_stale(self):
        item = make_item(ContextCategory.OTHER, "old", confidence=0.9, age_days=100)
        assert not item.is_stale(NOW)

    def test_data_points(self):
        pattern = make_item(
            ContextCategory.PATTERN, "completion_hour_9", source="inferred",
            metadata=PatternMetadata(pattern_type=PatternType.PRODUCTIVITY_PEAK, data_points=4),
        )
        person = make_item(ContextCategory.PERSON, "john")

        assert pattern.data_points == 4
        assert person.data_points == 0

    def test_to_dict_from_dict(self):
        """Serialized items come back with typed metadata."""
        item = make_item(
            ContextCategory.PERSON, "sarah", value="Sarah is my manager",
            metadata=PersonMetadata(relationship=Relationship.MANAGER, associated_lists=["Work"]),
            access_count=3,
            reinforcement_count=2,
        )

        data = item.to_dict()
        restored = ContextItem.from_dict(data)

        assert data["category"] == "person"
        assert data["metadata"]["relationship"] == "manager"
        assert restored.key == "sarah"
        assert restored.metadata.relationship == Relationship.MANAGER
        assert restored.metadata.associated_lists == ["Work"]
        assert restored.created_at == item.created_at
        assert restored.reinforcement_count == 2

    def test_from_dict_unknown_source(self):
        data = make_item(ContextCategory.OTHER, "x").to_dict()
        data["source"] = "rumour"

        with pytest.raises(InvalidData):
            ContextItem.from_dict(data)


class TestMetadata:
    """Test per-category metadata payloads."""

    def test_validate_matching_metadata(self):
        validate_metadata(ContextCategory.PERSON, PersonMetadata())
        validate_metadata(ContextCategory.SCHEDULE, ScheduleMetadata())
        validate_metadata(ContextCategory.GOAL, GoalMetadata())
        validate_metadata(ContextCategory.PATTERN, PatternMetadata())
        validate_metadata(ContextCategory.OTHER, OtherMetadata(values={"a": "b"}))
        validate_metadata(ContextCategory.PREFERENCE, None)

    def test_validate_wrong_metadata(self):
        """A payload for another category is rejected."""
        with pytest.raises(InvalidData):
            validate_metadata(ContextCategory.PERSON, PatternMetadata())

    def test_categories_without_metadata(self):
        with pytest.raises(InvalidData):
            validate_metadata(ContextCategory.CONSTRAINT, OtherMetadata())

    def test_pattern_distributions_use_int_keys(self):
        metadata = PatternMetadata(
            pattern_type=PatternType.PRODUCTIVITY_PEAK,
            data_points=3,
            hour_distribution={9: 2, 14: 1},
            day_distribution={2: 3},
        )

        data = metadata.to_dict()
        restored = metadata_from_dict(ContextCategory.PATTERN, data)

        assert data["hour_distribution"] == {"9": 2, "14": 1}
        assert restored.hour_distribution == {9: 2, 14: 1}
        assert restored.day_distribution == {2: 3}

    def test_goal_metadata_defaults_active(self):
        restored = metadata_from_dict(ContextCategory.GOAL, {"related_keywords": ["gym"]})
        assert restored.status == GoalStatus.ACTIVE

    def test_unknown_relationship(self):
        with pytest.raises(InvalidData):
            PersonMetadata.from_dict({"relationship": "nemesis"})

    def test_merge_overlays_set_fields(self):
        stored = ScheduleMetadata(schedule_type=ScheduleType.RECURRING_EVENT, days_of_week=[2], is_blocking=True)

        merged = merge_metadata(stored, ScheduleMetadata(days_of_week=[2, 4]))

        assert merged.schedule_type == ScheduleType.RECURRING_EVENT
        assert merged.days_of_week == [2, 4]
        assert merged.is_blocking is True
        assert stored.days_of_week == [2]

    def test_merge_with_missing_side(self):
        person = PersonMetadata(relationship=Relationship.FRIEND)

        assert merge_metadata(None, person) is person
        assert merge_metadata(person, None) is person


class TestParseDatetime:
    """Test timestamp parsing."""

    def test_z_suffix(self):
        assert parse_datetime("2024-06-12T10:00:00Z") == datetime(2024, 6, 12, 10, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_datetime("2024-06-12T10:00:00").tzinfo == timezone.utc

    def test_none(self):
        assert parse_datetime(None) is None

    @pytest.mark.parametrize("value", ["yesterday", "2024-13-40", 1718186400])
    def test_invalid(self, value):
        with pytest.raises(InvalidData):
            parse_datetime(value)
