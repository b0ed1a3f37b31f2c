"""
Rule-based signal extraction from task lifecycle events.

Turns task text, schedules, lists and completions into context store
upserts. Extraction is best effort: every failure is logged and
swallowed so it can never disturb the task operation that triggered it.
"""

import dataclasses
import logging
import re
import string
import time
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..memory.store import ContextStore
from ..memory.types import (
    ContextCategory,
    ContextSource,
    PatternMetadata,
    PatternType,
    PersonMetadata,
    ScheduleMetadata,
    ScheduleType,
)
from .events import TaskEvent, TaskEventChannel, TaskEventKind, TaskReader, TaskSnapshot


logger = logging.getLogger(__name__)


PERSON_INDICATORS = [
    "for ", "with ", "from ", "call ", "email ", "meet ", "meeting with ",
    "talk to ", "contact ", "remind ", "ask ", "tell ", "@",
]

NAME_STOP_WORDS = {"the", "a", "an", "to", "for", "from", "with", "about"}

MAX_NAME_WORDS = 3

GOAL_VOCABULARY = [
    "fitness", "health", "exercise", "workout", "gym",
    "learn", "study", "course", "class", "practice",
    "save", "budget", "invest", "financial",
    "career", "promotion", "job", "interview",
    "project", "launch", "build", "create",
    "clean", "organize", "declutter",
    "read", "book", "chapter",
]

SCHEDULE_INDICATORS = [
    "every ", "daily", "weekly", "monthly", "always ",
    "morning", "afternoon", "evening", "night",
    "monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday",
]

WEEKDAY_NAMES = ["", "Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def time_bucket(hour: int) -> str:
    """Map an hour of day to one of six fixed buckets."""
    if 5 <= hour < 9:
        return "early_morning"
    if 9 <= hour < 12:
        return "morning"
    if 12 <= hour < 14:
        return "midday"
    if 14 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 20:
        return "evening"
    return "night"


def weekday_number(moment: datetime) -> int:
    """1 = Sunday ... 7 = Saturday."""
    return moment.isoweekday() % 7 + 1


def extract_person_name(text: str) -> Optional[str]:
    """
    Pick a name off the front of text.

    Takes up to three words, the first of which must be capitalized, and
    stops at a lowercase word or a stop-word.
    """
    words = text.split()[:MAX_NAME_WORDS]
    if not words or not words[0][:1].isupper():
        return None

    name_parts: List[str] = []
    for word in words:
        clean = word.strip(string.punctuation)
        if not clean:
            break
        if name_parts and not clean[0].isupper():
            break
        if clean.lower() in NAME_STOP_WORDS:
            break
        name_parts.append(clean)

    return " ".join(name_parts) if name_parts else None


def find_person_mentions(text: str) -> List[str]:
    """Names following any person indicator, first mention of each."""
    names: List[str] = []
    for indicator in PERSON_INDICATORS:
        match = re.search(re.escape(indicator), text, re.IGNORECASE)
        if not match:
            continue
        name = extract_person_name(text[match.end():])
        if name and name not in names:
            names.append(name)
    return names


class SignalExtractor:
    """
    Passive learner wired to task lifecycle events.

    Usage:
        extractor = SignalExtractor(store, task_reader)
        extractor.attach(channel)

        channel.task_created(task_id)     # person/goal/schedule/list signals
        channel.task_completed(task_id)   # completion-time histograms
    """

    def __init__(self, store: ContextStore, reader: TaskReader):
        self.store = store
        self.reader = reader

    def attach(self, channel: TaskEventChannel) -> None:
        channel.subscribe(self.handle_event)

    def detach(self, channel: TaskEventChannel) -> None:
        channel.unsubscribe(self.handle_event)

    def handle_event(self, event: TaskEvent) -> None:
        """Re-read the task and run the rules for the event kind."""
        try:
            task = self.reader.get_task(event.task_id)
        except Exception as e:
            logger.warning(f"Could not read task {event.task_id}: {e}")
            return
        if task is None:
            logger.warning(f"Task not found for id {event.task_id}")
            return

        if event.kind == TaskEventKind.COMPLETED:
            self.track_completion(task)
        else:
            self.extract_from_task(task)

    def _run_rule(self, name: str, rule: Callable[[TaskSnapshot], None], task: TaskSnapshot) -> bool:
        try:
            rule(task)
        except Exception as e:
            self.store.metrics.increment_counter("extraction_errors_total", labels={"rule": name})
            logger.warning(f"Failed to extract {name} from task {task.id}: {e}")
            return False
        return True

    # ========== Task created/modified ==========

    def extract_from_task(self, task: TaskSnapshot) -> None:
        """Run every creation-time rule against a task."""
        logger.debug(f"Analyzing task '{task.title}'")
        self._run_rule("person", self._extract_people, task)
        self._run_rule("goal", self._extract_goals, task)
        self._run_rule("schedule", self._extract_schedule, task)
        self._run_rule("list", self._extract_list_usage, task)

    def _extract_people(self, task: TaskSnapshot) -> None:
        for name in find_person_mentions(task.text):
            self.store.upsert(
                ContextCategory.PERSON,
                name.lower(),
                name,
                ContextSource.EXTRACTED,
                metadata=PersonMetadata(last_mentioned_task_id=str(task.id)),
            )
            logger.debug(f"Extracted person '{name}'")

    def _extract_goals(self, task: TaskSnapshot) -> None:
        text = task.text.lower()
        list_name = (task.list_name or "").lower()
        for goal in GOAL_VOCABULARY:
            if goal in text or goal in list_name:
                self.store.upsert(
                    ContextCategory.GOAL,
                    goal,
                    f"User has tasks related to {goal}",
                    ContextSource.INFERRED,
                )

    def _extract_schedule(self, task: TaskSnapshot) -> None:
        text = task.text.lower()
        for indicator in SCHEDULE_INDICATORS:
            if indicator in text:
                pattern = indicator.strip()
                self.store.upsert(
                    ContextCategory.SCHEDULE,
                    f"pattern_{pattern.replace(' ', '_')}",
                    f"Has tasks with '{pattern}' pattern",
                    ContextSource.INFERRED,
                )

        if task.is_recurring and task.recurrence_days:
            self.store.upsert(
                ContextCategory.SCHEDULE,
                f"recurring_{task.title.lower()[:20]}",
                f"Recurring task: {task.title}",
                ContextSource.EXTRACTED,
                metadata=ScheduleMetadata(
                    schedule_type=ScheduleType.RECURRING_EVENT,
                    days_of_week=list(task.recurrence_days),
                ),
            )

        if task.scheduled_time is not None:
            hour = task.scheduled_time.hour
            bucket = time_bucket(hour)
            self._observe_pattern(
                f"preferred_time_{bucket}",
                f"Often schedules tasks in the {bucket.replace('_', ' ')}",
                PatternType.PREFERRED_TIME,
                task.scheduled_time,
            )

    def _extract_list_usage(self, task: TaskSnapshot) -> None:
        if not task.list_name:
            return
        self.store.upsert(
            ContextCategory.PREFERENCE,
            f"list_usage_{task.list_name.lower()}",
            f"Uses '{task.list_name}' list",
            ContextSource.INFERRED,
        )

    # ========== Task completed ==========

    def track_completion(self, task: TaskSnapshot) -> None:
        """Count the completion in the hour-of-day and weekday patterns."""
        if task.completed_at is None:
            logger.debug(f"Task {task.id} has no completion time")
            return
        self._run_rule("completion_hour", self._track_completion_hour, task)
        self._run_rule("completion_day", self._track_completion_day, task)
        logger.debug(f"Tracked completion patterns for '{task.title}'")

    def _track_completion_hour(self, task: TaskSnapshot) -> None:
        hour = task.completed_at.hour
        self._observe_pattern(
            f"completion_hour_{hour}",
            f"Productive around {hour}:00",
            PatternType.PRODUCTIVITY_PEAK,
            task.completed_at,
        )

    def _track_completion_day(self, task: TaskSnapshot) -> None:
        weekday = weekday_number(task.completed_at)
        self._observe_pattern(
            f"completion_day_{weekday}",
            f"Active on {WEEKDAY_NAMES[weekday]}s",
            PatternType.COMPLETION_HABIT,
            task.completed_at,
        )

    def _observe_pattern(
        self,
        key: str,
        value: str,
        pattern_type: PatternType,
        observed_at: datetime,
    ) -> None:
        """Upsert a Pattern item, adding one data point per observation."""
        with self.store.lock:
            existing = self.store.fetch(ContextCategory.PATTERN, key)
            previous = existing.metadata if existing and isinstance(existing.metadata, PatternMetadata) else None
            if previous is None:
                previous = PatternMetadata(pattern_type=pattern_type)

            hours: Dict[int, int] = dict(previous.hour_distribution)
            hours[observed_at.hour] = hours.get(observed_at.hour, 0) + 1
            days: Dict[int, int] = dict(previous.day_distribution)
            weekday = weekday_number(observed_at)
            days[weekday] = days.get(weekday, 0) + 1

            metadata = dataclasses.replace(
                previous,
                data_points=previous.data_points + 1,
                last_observed=observed_at,
                hour_distribution=hours,
                day_distribution=days,
            )
            self.store.upsert(
                ContextCategory.PATTERN,
                key,
                value,
                ContextSource.INFERRED,
                metadata=metadata,
            )

    # ========== Backfill ==========

    def process_all_existing_tasks(self, batch_size: int = 20, batch_pause: float = 0.0) -> int:
        """
        Run creation-time extraction over every task in the task store.

        Args:
            batch_size: Tasks processed between pauses
            batch_pause: Seconds to sleep between batches

        Returns:
            Number of tasks processed
        """
        try:
            tasks = self.reader.list_tasks()
        except Exception as e:
            logger.warning(f"Could not list tasks for backfill: {e}")
            return 0

        logger.info(f"Processing {len(tasks)} existing tasks")
        processed = 0
        for start in range(0, len(tasks), batch_size):
            for task in tasks[start:start + batch_size]:
                self.extract_from_task(task)
                processed += 1
            if batch_pause and start + batch_size < len(tasks):
                time.sleep(batch_pause)

        logger.info(f"Finished processing {processed} existing tasks")
        return processed
