"""
Context Store - CRUD, uniqueness and reinforcement over context items.

Every mutation runs under one re-entrant lock, so the store is the
single logical writer for its backend.
"""

import dataclasses
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterable, Iterator, List, Optional, Sequence, Union

from ..errors import (
    ContextMemoryError,
    DeleteFailed,
    FetchFailed,
    InvalidData,
    NotFound,
    SaveFailed,
)
from ..observability.metrics import MetricsCollector
from .storage import ContextStorage, SQLiteStorage
from .types import (
    ContextCategory,
    ContextItem,
    ContextMetadata,
    ContextSource,
    MemoryStats,
    merge_metadata,
    normalize_key,
    utc_now,
    validate_metadata,
)


logger = logging.getLogger(__name__)

CategoryLike = Union[ContextCategory, str]
SourceLike = Union[ContextSource, str]


def merge_values(existing: str, new_value: Optional[str]) -> str:
    """Append new information unless the existing value already says it."""
    if not new_value:
        return existing
    new_value = new_value.strip()
    if not new_value or new_value.lower() in existing.lower():
        return existing
    return f"{existing}; {new_value}"


def reinforced_confidence(confidence: float, boost_factor: float) -> float:
    """Move confidence towards 1.0 by a fraction of the remaining gap."""
    return min(1.0, confidence + (1.0 - confidence) * boost_factor)


@contextmanager
def _persistence(error_cls, message: str) -> Iterator[None]:
    """Translate backend failures into the store's error taxonomy."""
    try:
        yield
    except ContextMemoryError:
        raise
    except Exception as e:
        raise error_cls(f"{message}: {e}", cause=e) from e


class ContextStore:
    """
    Capacity-bounded store of context items.

    Example usage:
        store = ContextStore(db_path="/tmp/context.db")

        store.upsert("person", "John", "My manager", "explicit")
        store.upsert("person", " john ", "Runs the Monday sync", "explicit")

        people = store.fetch_all([ContextCategory.PERSON], min_confidence=0.3)
    """

    DEFAULT_MAX_ITEMS = 100
    DEFAULT_MAX_VALUE_LENGTH = 500

    def __init__(
        self,
        storage: Optional[ContextStorage] = None,
        db_path: Optional[str] = None,
        max_items: int = DEFAULT_MAX_ITEMS,
        max_value_length: int = DEFAULT_MAX_VALUE_LENGTH,
        metrics: Optional[MetricsCollector] = None,
    ):
        """
        Initialize the store.

        Args:
            storage: Storage backend. Defaults to SQLite.
            db_path: Path to the database file for SQLite storage.
            max_items: Hard capacity of the store.
            max_value_length: Longest accepted value, in characters.
            metrics: Collector for store metrics.
        """
        self._storage = storage or SQLiteStorage(db_path=db_path)
        self.max_items = max_items
        self.max_value_length = max_value_length
        self.metrics = metrics or MetricsCollector()
        self._lock = threading.RLock()

    @property
    def storage(self) -> ContextStorage:
        """Get the storage backend."""
        return self._storage

    @property
    def lock(self) -> threading.RLock:
        """The writer lock; hold it to make several store calls atomic."""
        return self._lock

    # ========== Writes ==========

    def _validate_value(self, value: Optional[str]) -> str:
        value = (value or "").strip()
        if not value:
            raise InvalidData("Value must not be empty")
        if len(value) > self.max_value_length:
            raise InvalidData(
                f"Value is {len(value)} characters, the limit is {self.max_value_length}"
            )
        return value

    def upsert(
        self,
        category: CategoryLike,
        key: str,
        value: str,
        source: SourceLike,
        metadata: Optional[ContextMetadata] = None,
    ) -> ContextItem:
        """
        Create an item, or reinforce the one already holding (category, key).

        Args:
            category: Item category, enum or raw string
            key: Identifier, normalized before lookup
            value: Description, 1 to max_value_length characters
            source: How the fact was learned, enum or raw string
            metadata: Payload matching the category

        Returns:
            The created or reinforced item

        Raises:
            InvalidData: On unknown category/source, empty key or bad value
            SaveFailed: If the backend rejects the write
        """
        category = ContextCategory.parse(category)
        source = ContextSource.parse(source)
        key = normalize_key(key or "")
        if not key:
            raise InvalidData("Key must not be empty")
        value = self._validate_value(value)
        validate_metadata(category, metadata)

        with self._lock:
            existing = self.fetch(category, key)
            if existing is not None:
                return self.reinforce(existing, value, metadata=metadata)

            self._enforce_capacity()

            item = ContextItem(
                category=category,
                key=key,
                value=value,
                source=source,
                metadata=metadata,
            )
            with _persistence(SaveFailed, f"Could not save {category.value}/{key}"):
                self._storage.insert(item)

            self.metrics.increment_counter("items_upserted_total", labels={"outcome": "created"})
            logger.debug(f"Created context item {category.value}/{key} ({source.value})")
            return item

    def reinforce(
        self,
        item: ContextItem,
        new_value: Optional[str] = None,
        metadata: Optional[ContextMetadata] = None,
    ) -> ContextItem:
        """
        Fold a repeated observation into an existing item.

        Raises confidence by the source boost factor, counts the
        reinforcement, and merges new_value in when it adds information.
        Fields set in new metadata overwrite the stored ones; the rest are kept.
        """
        validate_metadata(item.category, metadata)

        with self._lock:
            updated = dataclasses.replace(
                item,
                confidence=reinforced_confidence(item.confidence, item.source.boost_factor),
                reinforcement_count=item.reinforcement_count + 1,
                updated_at=utc_now(),
            )
            merged = merge_values(item.value, new_value)
            if len(merged) <= self.max_value_length:
                updated.value = merged
            else:
                logger.debug(f"Not merging into {item.key}: value would exceed {self.max_value_length} chars")
            updated.metadata = merge_metadata(item.metadata, metadata)

            with _persistence(SaveFailed, f"Could not reinforce {item.category.value}/{item.key}"):
                found = self._storage.update(updated)
            if not found:
                raise NotFound(item.key, item.category.value)

            for f in ("confidence", "reinforcement_count", "updated_at", "value", "metadata"):
                setattr(item, f, getattr(updated, f))

            self.metrics.increment_counter("items_upserted_total", labels={"outcome": "reinforced"})
            return item

    def mark_accessed(self, items: Sequence[ContextItem], now: Optional[datetime] = None) -> None:
        """
        Record a retrieval of each item in one transaction.

        Either every item's access count and timestamp advance or none do.
        """
        if not items:
            return
        now = now or utc_now()

        with self._lock:
            touched = [
                dataclasses.replace(
                    item,
                    access_count=item.access_count + 1,
                    last_accessed_at=now,
                )
                for item in items
            ]
            with _persistence(SaveFailed, "Could not record item access"):
                self._storage.update_many(touched)

            for item, fresh in zip(items, touched):
                item.access_count = fresh.access_count
                item.last_accessed_at = fresh.last_accessed_at

        self.metrics.increment_counter("items_accessed_total", value=len(items))

    def _enforce_capacity(self) -> None:
        """Evict the lowest-confidence item when the store is full."""
        with _persistence(FetchFailed, "Could not count items"):
            current = self._storage.count()

        while current >= self.max_items:
            with _persistence(FetchFailed, "Could not find eviction candidate"):
                victim = self._storage.lowest_confidence()
            if victim is None:
                break
            try:
                self._delete_by_id(victim)
            except DeleteFailed as e:
                logger.error(f"Capacity eviction of {victim.key} failed: {e}")
                raise SaveFailed(
                    f"Store is full and eviction failed: {e}", cause=e
                ) from e
            self.metrics.increment_counter("items_evicted_total", labels={"reason": "capacity"})
            logger.info(
                f"Evicted {victim.category.value}/{victim.key} "
                f"(confidence {victim.confidence:.2f}) to stay within {self.max_items} items"
            )
            current -= 1

    # ========== Reads ==========

    def fetch(self, category: CategoryLike, key: str) -> Optional[ContextItem]:
        """Fetch an item by identity, or None."""
        category = ContextCategory.parse(category)
        with _persistence(FetchFailed, f"Could not fetch {category.value}/{key}"):
            return self._storage.get(category, normalize_key(key))

    def get(self, category: CategoryLike, key: str) -> ContextItem:
        """Fetch an item by identity, raising NotFound if absent."""
        item = self.fetch(category, key)
        if item is None:
            raise NotFound(normalize_key(key), ContextCategory.parse(category).value)
        return item

    def fetch_all(
        self,
        categories: Optional[Iterable[CategoryLike]] = None,
        min_confidence: Optional[float] = None,
        limit: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> List[ContextItem]:
        """
        Fetch items sorted by confidence, then recency.

        Args:
            categories: Restrict to these categories
            min_confidence: Drop items whose effective confidence is lower
            limit: Maximum number of items
            now: Reference time for the decay

        Returns:
            Matching items
        """
        parsed = [ContextCategory.parse(c) for c in categories] if categories else None
        with _persistence(FetchFailed, "Could not fetch context items"):
            items = self._storage.fetch(parsed)

        if min_confidence is not None:
            now = now or utc_now()
            items = [i for i in items if i.effective_confidence(now) >= min_confidence]
        if limit is not None:
            items = items[:limit]
        return items

    def count(self) -> int:
        with _persistence(FetchFailed, "Could not count items"):
            return self._storage.count()

    def search(self, keyword: str) -> List[ContextItem]:
        """Case-insensitive substring match over key or value."""
        needle = (keyword or "").strip().lower()
        if not needle:
            return []
        return [
            item for item in self.fetch_all()
            if needle in item.key or needle in item.value.lower()
        ]

    # ========== Deletes ==========

    def _delete_by_id(self, item: ContextItem) -> bool:
        with _persistence(DeleteFailed, f"Could not delete {item.category.value}/{item.key}"):
            return self._storage.delete(item.id)

    def delete(self, item: ContextItem) -> None:
        """Delete one item, raising NotFound if it is already gone."""
        with self._lock:
            if not self._delete_by_id(item):
                raise NotFound(item.key, item.category.value)
        logger.debug(f"Deleted context item {item.category.value}/{item.key}")

    def delete_all(self, category: Optional[CategoryLike] = None) -> int:
        """
        Delete every item, or every item in one category.

        Returns:
            Number of items removed
        """
        categories = [ContextCategory.parse(category)] if category is not None else None
        with self._lock:
            with _persistence(DeleteFailed, "Could not delete context items"):
                if categories:
                    removed = self._storage.delete_where(categories)
                else:
                    removed = self._storage.clear_all()

        scope = categories[0].value if categories else "all categories"
        logger.info(f"Deleted {removed} context items from {scope}")
        return removed

    # ========== Import/Export ==========

    def export_context(self, output_path: str) -> int:
        """
        Export all items to a JSON file.

        Returns:
            Number of items exported
        """
        with _persistence(FetchFailed, "Could not export context items"):
            items = self._storage.export_all()

        with open(output_path, "w") as f:
            json.dump({
                "version": 1,
                "exported_at": utc_now().isoformat(),
                "items": items,
            }, f, indent=2)

        logger.info(f"Exported {len(items)} context items to {output_path}")
        return len(items)

    def import_context(self, input_path: str) -> int:
        """
        Import items from a JSON export.

        Known identities are reinforced; new ones are inserted with their
        recorded history, subject to the capacity bound.

        Returns:
            Number of items imported
        """
        with open(input_path, "r") as f:
            data = json.load(f)
        if not isinstance(data, dict) or not isinstance(data.get("items", []), list):
            raise InvalidData(f"{input_path} is not a context export")

        imported = 0
        for raw in data.get("items", []):
            try:
                item = ContextItem.from_dict(raw)
                if not item.key:
                    raise InvalidData("Key must not be empty")
                self._validate_value(item.value)
            except (InvalidData, ValueError, TypeError, AttributeError) as e:
                logger.warning(f"Skipping invalid context item: {e}")
                continue
            self._import_item(item)
            imported += 1

        logger.info(f"Imported {imported} context items from {input_path}")
        return imported

    def _import_item(self, item: ContextItem) -> None:
        with self._lock:
            existing = self.fetch(item.category, item.key)
            if existing is not None:
                self.reinforce(existing, item.value)
                return
            self._enforce_capacity()
            item.id = None
            with _persistence(SaveFailed, f"Could not import {item.category.value}/{item.key}"):
                self._storage.insert(item)

    # ========== Statistics ==========

    def get_stats(self) -> MemoryStats:
        """Get memory usage statistics."""
        with _persistence(FetchFailed, "Could not read statistics"):
            return self._storage.get_stats()

    def get_stats_summary(self) -> str:
        """Get a human-readable stats summary."""
        stats = self.get_stats()

        lines = [
            "Context Memory Statistics",
            "=" * 40,
            f"Items: {stats.total_items} / {self.max_items}",
            f"Storage size: {stats.total_size_bytes / 1024:.1f} KB",
            "",
            "Items by category:",
        ]
        for category in ContextCategory:
            count = stats.items_by_category.get(category.value, 0)
            if count:
                lines.append(f"  - {category.display_name}: {count}")

        lines.append("")
        lines.append("Items by source:")
        for source in ContextSource:
            count = stats.items_by_source.get(source.value, 0)
            if count:
                lines.append(f"  - {source.display_name}: {count}")

        lines.extend([
            "",
            f"Average confidence: {stats.average_confidence:.2f}",
            f"Total accesses: {stats.total_access_count}",
        ])
        if stats.oldest_item:
            lines.append(f"Oldest item: {stats.oldest_item.date()}")
        if stats.newest_item:
            lines.append(f"Newest item: {stats.newest_item.date()}")

        return "\n".join(lines)

    def close(self):
        """Close the store and release resources."""
        self._storage.close()

    def __enter__(self) -> "ContextStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> Any:
        self.close()
        return False
