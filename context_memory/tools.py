"""
Tool surface for an LLM dispatch layer or UI.

Each tool validates its arguments with a pydantic model and returns a
user-facing string. Store errors never escape: they are logged and
turned into an apology.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from .errors import ContextMemoryError, InvalidData
from .memory.insights import InsightAggregator, PatternInsight
from .memory.ranker import (
    DEFAULT_MAX_ITEMS,
    DEFAULT_MIN_CONFIDENCE,
    RelevanceRanker,
    format_for_prompt,
)
from .memory.store import ContextStore
from .memory.types import (
    ContextCategory,
    ContextItem,
    ContextSource,
    Importance,
    PersonMetadata,
    Relationship,
    normalize_key,
)


logger = logging.getLogger(__name__)


MAX_INFORMATION_LENGTH = 500
RECALL_MIN_CONFIDENCE = 0.1
RECALL_ITEMS_PER_CATEGORY = 5

RECALL_CATEGORY_ORDER = [
    ContextCategory.PERSON,
    ContextCategory.SCHEDULE,
    ContextCategory.GOAL,
    ContextCategory.PREFERENCE,
    ContextCategory.CONSTRAINT,
    ContextCategory.PATTERN,
    ContextCategory.OTHER,
]

RELATIONSHIP_KEYWORDS = [
    (Relationship.MANAGER, ("manager", "boss")),
    (Relationship.COLLEAGUE, ("colleague", "coworker", "team")),
    (Relationship.REPORT, ("report",)),
    (Relationship.CLIENT, ("client", "customer")),
    (Relationship.FAMILY, ("mom", "dad", "parent", "brother", "sister", "family")),
    (Relationship.FRIEND, ("friend",)),
    (Relationship.PARTNER, ("partner", "spouse", "husband", "wife")),
]


class RememberArguments(BaseModel):
    """Arguments for the remember tool."""
    information: str = Field(..., description="What to remember (1-500 chars)")
    category: str = Field(
        default="other",
        description="Type of information: person, preference, schedule, goal, constraint, other",
    )
    key: Optional[str] = Field(
        default=None,
        description="Short identifier key for retrieval. Auto-generated if not provided.",
    )


class RecallArguments(BaseModel):
    """Arguments for the recall tool."""
    category: Optional[str] = Field(
        default=None,
        description="Filter by type: all, person, preference, schedule, goal, constraint, pattern",
    )
    topic: Optional[str] = Field(default=None, description="Specific topic or keyword to search")


class ForgetArguments(BaseModel):
    """Arguments for the forget tool."""
    topic: str = Field(
        ...,
        description="Specific key, category name, or 'all' for everything",
    )
    confirm: bool = Field(default=False, description="Must be true to delete more than one item")


def generate_key(information: str, category: ContextCategory) -> str:
    """Derive a key: a person's first capitalized word, else the first three significant words."""
    if category == ContextCategory.PERSON:
        for word in information.split():
            if word[:1].isupper() and len(word) > 1:
                return word.strip(".,;:!?").lower()

    significant = [w for w in information.lower().split() if len(w) > 2]
    return "_".join(significant[:3])


def infer_relationship(information: str) -> Optional[Relationship]:
    lowered = information.lower()
    for relationship, keywords in RELATIONSHIP_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return relationship
    return None


def confidence_marker(confidence: float) -> str:
    if confidence >= 0.7:
        return ""
    if confidence >= 0.4:
        return "(~)"
    return "(?)"


def _parse_category_name(name: str) -> Optional[ContextCategory]:
    """Match a category by value ("person") or display name ("people")."""
    lowered = name.strip().lower()
    for category in ContextCategory:
        if lowered in (category.value, category.display_name.lower()):
            return category
    return None


class ContextTools:
    """
    The operations exposed to callers of the context memory.

    Usage:
        tools = ContextTools(store)

        tools.remember("Sarah is my manager", category="person")
        print(tools.recall(topic="sarah"))
        prompt_context = tools.format_for_prompt(tools.relevant_context("meeting with sarah"))
    """

    def __init__(
        self,
        store: ContextStore,
        ranker: Optional[RelevanceRanker] = None,
        insights: Optional[InsightAggregator] = None,
    ):
        self.store = store
        self.ranker = ranker or RelevanceRanker(store)
        self.insights = insights or InsightAggregator(store)

    # ========== remember ==========

    def remember(
        self,
        information: str,
        category: str = "other",
        key: Optional[str] = None,
        source: Union[ContextSource, str] = ContextSource.EXPLICIT,
    ) -> str:
        """
        Store something about the user.

        Source defaults to explicit: the caller is relaying the user.
        """
        args = RememberArguments(information=information, category=category, key=key)

        info = args.information.strip()
        if not info:
            return "Please provide some information to remember."
        if len(info) > MAX_INFORMATION_LENGTH:
            return f"Information is too long. Please keep it under {MAX_INFORMATION_LENGTH} characters."

        try:
            parsed_category = ContextCategory.parse(args.category)
        except InvalidData:
            return f"I don't know the category '{args.category}'. Use person, preference, schedule, goal, constraint or other."

        try:
            parsed_source = ContextSource.parse(source)
        except InvalidData as e:
            logger.error(f"remember rejected: {e}")
            return "Sorry, I couldn't save that information. Please try again."

        item_key = normalize_key(args.key) if args.key else generate_key(info, parsed_category)
        if not item_key:
            item_key = normalize_key(info[:20])

        metadata = None
        if parsed_category == ContextCategory.PERSON:
            relationship = infer_relationship(info)
            if relationship is not None:
                metadata = PersonMetadata(relationship=relationship, importance=Importance.MEDIUM)

        try:
            self.store.upsert(parsed_category, item_key, info, parsed_source, metadata=metadata)
        except ContextMemoryError as e:
            logger.error(f"remember failed: {e}")
            return "Sorry, I couldn't save that information. Please try again."

        if parsed_category == ContextCategory.PERSON:
            return f"I'll remember that {item_key.title()} is {info}."
        if parsed_category == ContextCategory.PREFERENCE:
            return f"Got it, I'll keep in mind that you {info.lower()}."
        if parsed_category == ContextCategory.SCHEDULE:
            return f"I'll remember your schedule: {info}."
        if parsed_category == ContextCategory.GOAL:
            return f"I'll keep track of your goal: {info}."
        if parsed_category == ContextCategory.CONSTRAINT:
            return f"Noted. I'll respect that {info.lower()}."
        return f"I'll remember that: {info}."

    # ========== recall ==========

    def recall(self, category: Optional[str] = None, topic: Optional[str] = None) -> str:
        """Describe what is known, optionally narrowed by topic or category."""
        args = RecallArguments(category=category, topic=topic)
        category_name = (args.category or "").strip().lower()

        try:
            if args.topic:
                items = self.store.search(args.topic)
            elif category_name and category_name != "all":
                items = self.store.fetch_all(
                    [ContextCategory.parse(category_name)],
                    min_confidence=RECALL_MIN_CONFIDENCE,
                )
            else:
                items = self.store.fetch_all(min_confidence=RECALL_MIN_CONFIDENCE)
        except InvalidData:
            return f"I don't know the category '{args.category}'."
        except ContextMemoryError as e:
            logger.error(f"recall failed: {e}")
            return "Sorry, I couldn't look that up. Please try again."

        if not items:
            if args.topic:
                return f"I don't have any information stored about '{args.topic}'. You can tell me things to remember."
            if category_name and category_name != "all":
                return f"I don't have any {category_name} information stored yet. You can tell me things to remember."
            return "I don't have any information stored yet. You can tell me things to remember by saying 'remember that...'."

        return self._format_recall(items)

    def _format_recall(self, items: List[ContextItem]) -> str:
        grouped: Dict[ContextCategory, List[ContextItem]] = {}
        for item in items:
            grouped.setdefault(item.category, []).append(item)

        sections = []
        for category in RECALL_CATEGORY_ORDER:
            members = grouped.get(category)
            if not members:
                continue
            lines = [f"{category.display_name}:"]
            for item in members[:RECALL_ITEMS_PER_CATEGORY]:
                marker = confidence_marker(item.effective_confidence())
                lines.append(f"• {item.key.title()}: {item.value} {marker}".rstrip())
            if len(members) > RECALL_ITEMS_PER_CATEGORY:
                lines.append(f"  ...and {len(members) - RECALL_ITEMS_PER_CATEGORY} more")
            sections.append("\n".join(lines) + "\n")

        return "Here's what I know:\n\n" + "\n".join(sections)

    # ========== forget ==========

    def forget(self, topic: str, confirm: bool = False) -> str:
        """Delete a keyword match, a whole category, or everything."""
        args = ForgetArguments(topic=topic, confirm=confirm)
        topic = args.topic.strip().lower()

        if topic == "all":
            return self._forget_all(args.confirm)

        category = _parse_category_name(topic)
        if category is not None:
            return self._forget_category(category, topic, args.confirm)

        return self._forget_matches(topic, args.confirm)

    def _forget_all(self, confirm: bool) -> str:
        if not confirm:
            return "This will delete all stored information about you. Say 'forget all, confirm' to proceed."
        try:
            count = self.store.delete_all()
        except ContextMemoryError as e:
            logger.error(f"forget all failed: {e}")
            return "Sorry, I couldn't clear the stored information. Please try again."
        return f"Cleared all stored context ({count} items)."

    def _forget_category(self, category: ContextCategory, topic: str, confirm: bool) -> str:
        try:
            items = self.store.fetch_all([category])
            if not items:
                return f"I don't have any {category.display_name.lower()} information stored."
            if len(items) > 1 and not confirm:
                return (
                    f"This will delete {len(items)} items in the {category.display_name} category. "
                    f"Say 'forget {topic}, confirm' to proceed."
                )
            count = self.store.delete_all(category)
        except ContextMemoryError as e:
            logger.error(f"forget {category.value} failed: {e}")
            return "Sorry, I couldn't clear that category. Please try again."
        return f"Cleared all {count} items in the {category.display_name} category."

    def _forget_matches(self, topic: str, confirm: bool) -> str:
        try:
            matches = self.store.search(topic)
        except ContextMemoryError as e:
            logger.error(f"forget '{topic}' failed: {e}")
            return "Sorry, I couldn't remove that information. Please try again."

        if not matches:
            return f"I don't have any information about '{topic}' stored."

        if len(matches) == 1:
            item = matches[0]
            try:
                self.store.delete(item)
            except ContextMemoryError as e:
                logger.error(f"forget '{item.key}' failed: {e}")
                return "Sorry, I couldn't remove that information. Please try again."
            return f"Removed information about '{item.key}'."

        if not confirm:
            listed = ", ".join(f"'{m.key}'" for m in matches[:3])
            more = f" and {len(matches) - 3} more" if len(matches) > 3 else ""
            return (
                f"Found {len(matches)} items matching '{topic}': {listed}{more}. "
                f"Say 'forget {topic}, confirm' to delete all of them."
            )

        deleted = 0
        for item in matches:
            try:
                self.store.delete(item)
                deleted += 1
            except ContextMemoryError as e:
                logger.warning(f"Failed to delete context item {item.key}: {e}")
        return f"Removed {deleted} items matching '{topic}'."

    # ========== prompt context ==========

    def relevant_context(
        self,
        query: Optional[str] = None,
        max_items: int = DEFAULT_MAX_ITEMS,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        now: Optional[datetime] = None,
    ) -> List[ContextItem]:
        """Ranked context for a prompt; empty if the store is unavailable."""
        try:
            return self.ranker.relevant(query, max_items=max_items, min_confidence=min_confidence, now=now)
        except ContextMemoryError as e:
            logger.error(f"relevant_context failed: {e}")
            return []

    def relevant_for_intent(self, intent: Any, now: Optional[datetime] = None) -> List[ContextItem]:
        try:
            return self.ranker.relevant_for_intent(intent, now=now)
        except ContextMemoryError as e:
            logger.error(f"relevant_for_intent failed: {e}")
            return []

    @staticmethod
    def format_for_prompt(items: List[ContextItem]) -> str:
        return format_for_prompt(items)

    def generate_insights(self, now: Optional[datetime] = None) -> List[PatternInsight]:
        return self.insights.generate_insights(now)

    def prompt_summary(self, now: Optional[datetime] = None) -> str:
        return self.insights.prompt_summary(now)

    # ========== dispatch ==========

    TOOL_MODELS = {
        "remember": RememberArguments,
        "recall": RecallArguments,
        "forget": ForgetArguments,
    }

    @classmethod
    def tool_definitions(cls) -> List[Dict[str, Any]]:
        """JSON schema of each tool's arguments, for registering with a model."""
        return [
            {
                "name": name,
                "description": (model.__doc__ or "").strip(),
                "parameters": model.model_json_schema(),
            }
            for name, model in cls.TOOL_MODELS.items()
        ]

    def call(self, name: str, arguments: Dict[str, Any]) -> str:
        """Invoke a tool by name with raw arguments from a model."""
        model = self.TOOL_MODELS.get(name)
        if model is None:
            raise InvalidData(f"Unknown tool: {name!r}")
        args = model.model_validate(arguments)
        return getattr(self, name)(**args.model_dump())

