"""
Tests for task events and signal extraction.
"""

import json
import pytest
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

from context_memory.errors import SaveFailed
from context_memory.extraction import (
    JsonFileTaskReader,
    SignalExtractor,
    TaskEvent,
    TaskEventChannel,
    TaskEventKind,
    TaskSnapshot,
)
from context_memory.extraction.extractor import (
    extract_person_name,
    find_person_mentions,
    time_bucket,
    weekday_number,
)
from context_memory.memory import ContextCategory, Relationship, ScheduleType
from context_memory.tools import ContextTools


@pytest.fixture
def channel():
    return TaskEventChannel()


@pytest.fixture
def extractor(store, task_reader, channel):
    extractor = SignalExtractor(store, task_reader)
    extractor.attach(channel)
    return extractor


def keys(store, category):
    return {item.key for item in store.fetch_all([category])}


class TestHelpers:
    """Test the text and time rules."""

    @pytest.mark.parametrize("text,expected", [
        ("John about the report", "John"),
        ("Sarah Connor tomorrow", "Sarah Connor"),
        ("Sarah, tomorrow", "Sarah"),
        ("the boss", None),
        ("", None),
    ])
    def test_extract_person_name(self, text, expected):
        assert extract_person_name(text) == expected

    def test_find_person_mentions(self):
        assert set(find_person_mentions("Email Bob and call Alice")) == {"Bob", "Alice"}

    def test_find_person_mentions_deduplicates(self):
        assert find_person_mentions("Meeting with Sarah Connor") == ["Sarah Connor"]

    def test_find_person_mentions_none(self):
        assert find_person_mentions("buy milk") == []

    @pytest.mark.parametrize("hour,bucket", [
        (4, "night"), (5, "early_morning"), (9, "morning"), (12, "midday"),
        (14, "afternoon"), (17, "evening"), (20, "night"),
    ])
    def test_time_bucket(self, hour, bucket):
        assert time_bucket(hour) == bucket

    def test_weekday_number(self):
        """Sunday is 1."""
        assert weekday_number(datetime(2024, 6, 9)) == 1
        assert weekday_number(datetime(2024, 6, 12)) == 4
        assert weekday_number(datetime(2024, 6, 15)) == 7


class TestTaskEventChannel:
    """Test the publish/subscribe channel."""

    def test_publish_to_subscribers(self, channel):
        received = []
        channel.subscribe(received.append)

        channel.task_created("1")
        channel.task_completed("1")

        assert received == [
            TaskEvent(TaskEventKind.CREATED, "1"),
            TaskEvent(TaskEventKind.COMPLETED, "1"),
        ]

    def test_failing_handler_is_isolated(self, channel):
        """A raising handler neither stops the others nor reaches the publisher."""
        failing = MagicMock(side_effect=RuntimeError("boom"))
        received = []
        channel.subscribe(failing)
        channel.subscribe(received.append)

        channel.task_created("1")

        assert len(received) == 1

    def test_unsubscribe(self, channel):
        handler = MagicMock()
        channel.subscribe(handler)
        channel.subscribe(handler)
        assert channel.handler_count == 1

        channel.unsubscribe(handler)
        channel.task_created("1")

        handler.assert_not_called()


class TestCreationSignals:
    """Test signals from created or modified tasks."""

    def test_person(self, extractor, store, task_reader, channel):
        task_reader.add(TaskSnapshot(id="1", title="Call John about the report"))

        channel.task_created("1")

        john = store.get("person", "john")
        assert john.value == "John"
        assert john.confidence == 0.5
        assert john.metadata.last_mentioned_task_id == "1"

    def test_person_reinforced(self, extractor, store, task_reader, channel):
        task_reader.add(TaskSnapshot(id="1", title="Call John"))
        task_reader.add(TaskSnapshot(id="2", title="Lunch with John"))

        channel.task_created("1")
        channel.task_created("2")

        john = store.get("person", "john")
        assert john.reinforcement_count == 1
        assert john.metadata.last_mentioned_task_id == "2"

    def test_mention_keeps_remembered_relationship(self, extractor, store, task_reader, channel):
        ContextTools(store).remember("Sarah is my manager", category="person")
        task_reader.add(TaskSnapshot(id="1", title="Call Sarah about budget"))

        channel.task_created("1")

        sarah = store.get("person", "sarah")
        assert sarah.metadata.relationship == Relationship.MANAGER
        assert sarah.metadata.last_mentioned_task_id == "1"
        assert sarah.reinforcement_count == 1

    def test_goals(self, extractor, store, task_reader, channel):
        task_reader.add(TaskSnapshot(id="1", title="Go to the gym", list_name="Health"))

        channel.task_created("1")

        assert keys(store, ContextCategory.GOAL) == {"gym", "health"}
        assert store.get("goal", "gym").confidence == 0.3

    def test_list_usage(self, extractor, store, task_reader, channel):
        task_reader.add(TaskSnapshot(id="1", title="Buy milk", list_name="Groceries"))

        channel.task_created("1")

        assert store.get("preference", "list_usage_groceries").value == "Uses 'Groceries' list"

    def test_schedule_indicators(self, extractor, store, task_reader, channel):
        task_reader.add(TaskSnapshot(id="1", title="Water plants every morning"))

        channel.task_created("1")

        assert keys(store, ContextCategory.SCHEDULE) == {"pattern_every", "pattern_morning"}

    def test_recurring_task(self, extractor, store, task_reader, channel):
        task_reader.add(TaskSnapshot(id="1", title="Team sync", is_recurring=True, recurrence_days=[2, 4]))

        channel.task_created("1")

        item = store.get("schedule", "recurring_team sync")
        assert item.metadata.schedule_type == ScheduleType.RECURRING_EVENT
        assert item.metadata.days_of_week == [2, 4]

    def test_preferred_time(self, extractor, store, task_reader, channel):
        """Each scheduled task adds one data point to its time bucket."""
        scheduled = datetime(2024, 6, 12, 8, 30, tzinfo=timezone.utc)
        task_reader.add(TaskSnapshot(id="1", title="Dentist", scheduled_time=scheduled))
        task_reader.add(TaskSnapshot(id="2", title="Dentist", scheduled_time=scheduled))

        channel.task_created("1")
        channel.task_created("2")

        item = store.get("pattern", "preferred_time_early_morning")
        assert item.metadata.data_points == 2
        assert item.metadata.hour_distribution == {8: 2}

    def test_missing_task(self, extractor, store, channel):
        channel.task_created("404")

        assert store.count() == 0

    def test_reader_failure_is_swallowed(self, store, channel):
        reader = MagicMock()
        reader.get_task.side_effect = OSError("task store offline")
        SignalExtractor(store, reader).attach(channel)

        channel.task_created("1")

        assert store.count() == 0

    def test_failing_rule_does_not_stop_others(self, extractor, store, task_reader, channel, metrics):
        task_reader.add(TaskSnapshot(id="1", title="Call John", list_name="Work"))
        real_upsert = store.upsert

        def failing_for_people(category, *args, **kwargs):
            if category == ContextCategory.PERSON:
                raise SaveFailed("disk full")
            return real_upsert(category, *args, **kwargs)

        with patch.object(store, "upsert", side_effect=failing_for_people):
            channel.task_created("1")

        assert store.fetch("person", "john") is None
        assert store.fetch("preference", "list_usage_work") is not None
        assert metrics.get_metric("extraction_errors_total").get_sum({"rule": "person"}) == 1

    def test_detach(self, extractor, store, task_reader, channel):
        task_reader.add(TaskSnapshot(id="1", title="Call John"))

        extractor.detach(channel)
        channel.task_created("1")

        assert store.count() == 0


class TestCompletionSignals:
    """Test completion-time patterns."""

    def test_completion_patterns(self, extractor, store, task_reader, channel):
        completed = datetime(2024, 6, 12, 9, 15, tzinfo=timezone.utc)
        task_reader.add(TaskSnapshot(id="1", title="Write summary", completed_at=completed))
        task_reader.add(TaskSnapshot(id="2", title="Send invoice", completed_at=completed))

        channel.task_completed("1")
        channel.task_completed("2")

        hour = store.get("pattern", "completion_hour_9")
        day = store.get("pattern", "completion_day_4")
        assert hour.metadata.data_points == 2
        assert hour.reinforcement_count == 1
        assert day.value == "Active on Wednesdays"
        assert day.metadata.day_distribution == {4: 2}

    def test_completion_without_timestamp(self, extractor, store, task_reader, channel):
        task_reader.add(TaskSnapshot(id="1", title="Write summary"))

        channel.task_completed("1")

        assert store.count() == 0

    def test_completion_does_not_extract_text(self, extractor, store, task_reader, channel):
        completed = datetime(2024, 6, 12, 9, 15, tzinfo=timezone.utc)
        task_reader.add(TaskSnapshot(id="1", title="Call John", completed_at=completed))

        channel.task_completed("1")

        assert keys(store, ContextCategory.PERSON) == set()


class TestBackfill:
    """Test processing existing tasks."""

    def test_process_all_existing_tasks(self, store, task_reader):
        for i, name in enumerate(["John", "Sarah", "Priya"]):
            task_reader.add(TaskSnapshot(id=str(i), title=f"Call {name}"))
        extractor = SignalExtractor(store, task_reader)

        with patch("context_memory.extraction.extractor.time.sleep") as sleep:
            processed = extractor.process_all_existing_tasks(batch_size=2, batch_pause=0.5)

        assert processed == 3
        assert keys(store, ContextCategory.PERSON) == {"john", "sarah", "priya"}
        sleep.assert_called_once_with(0.5)

    def test_listing_failure(self, store):
        reader = MagicMock()
        reader.list_tasks.side_effect = OSError("task store offline")

        assert SignalExtractor(store, reader).process_all_existing_tasks() == 0


class TestJsonFileTaskReader:
    """Test reading a task export."""

    def test_reads_tasks(self, tmp_path):
        path = tmp_path / "tasks.json"
        path.write_text(json.dumps({"tasks": [
            {"id": 1, "title": "Call John", "list_name": "Work"},
            {"id": 2, "title": "Gym", "completed_at": "2024-06-12T09:15:00Z", "recurrence_days": [2]},
        ]}))
        reader = JsonFileTaskReader(str(path))

        tasks = reader.list_tasks()
        gym = reader.get_task("2")

        assert len(tasks) == 2
        assert reader.get_task(1).list_name == "Work"
        assert gym.completed_at == datetime(2024, 6, 12, 9, 15, tzinfo=timezone.utc)
        assert gym.recurrence_days == [2]
        assert reader.get_task("3") is None

    def test_plain_list(self, tmp_path):
        path = tmp_path / "tasks.json"
        path.write_text(json.dumps([{"id": "a", "title": "Read a book"}]))

        assert [t.title for t in JsonFileTaskReader(str(path)).list_tasks()] == ["Read a book"]
