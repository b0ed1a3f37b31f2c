"""
Context storage backends.

Provides SQLite-based persistent storage for context items. Backends
raise their native errors; the store translates them.
"""

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .types import (
    ContextCategory,
    ContextItem,
    ContextSource,
    MemoryStats,
    metadata_from_dict,
    parse_datetime,
)


logger = logging.getLogger(__name__)


class ContextStorage(ABC):
    """Abstract base class for context storage backends."""

    @abstractmethod
    def insert(self, item: ContextItem) -> ContextItem:
        """
        Insert a new item.

        Args:
            item: The item to insert. Its (category, key) must be unused.

        Returns:
            The item with its storage id assigned
        """
        pass

    @abstractmethod
    def update(self, item: ContextItem) -> bool:
        """
        Write back every mutable field of an existing item.

        Returns:
            True if the item was updated, False if not found
        """
        pass

    @abstractmethod
    def update_many(self, items: Sequence[ContextItem]) -> int:
        """
        Write back several items in a single transaction.

        Either every item is written or none is.

        Returns:
            Number of rows updated
        """
        pass

    @abstractmethod
    def delete(self, item_id: int) -> bool:
        """
        Delete an item by storage id.

        Returns:
            True if the item was deleted, False if not found
        """
        pass

    @abstractmethod
    def delete_where(self, categories: Optional[Sequence[ContextCategory]] = None) -> int:
        """
        Delete every item, or every item in the given categories.

        Returns:
            Number of items removed
        """
        pass

    @abstractmethod
    def get(self, category: ContextCategory, key: str) -> Optional[ContextItem]:
        """Fetch one item by identity."""
        pass

    @abstractmethod
    def fetch(
        self,
        categories: Optional[Sequence[ContextCategory]] = None,
        limit: Optional[int] = None,
    ) -> List[ContextItem]:
        """
        Fetch items, highest stored confidence first, then most recently updated.

        Args:
            categories: Restrict to these categories
            limit: Maximum number of rows

        Returns:
            Matching items
        """
        pass

    @abstractmethod
    def count(self) -> int:
        """Number of stored items."""
        pass

    @abstractmethod
    def lowest_confidence(self) -> Optional[ContextItem]:
        """The item with the lowest stored confidence, oldest update first on ties."""
        pass

    @abstractmethod
    def get_stats(self) -> MemoryStats:
        """Get storage statistics."""
        pass

    @abstractmethod
    def export_all(self) -> List[Dict[str, Any]]:
        """Export all items as a list of dictionaries."""
        pass

    def clear_all(self) -> int:
        """Remove every item."""
        return self.delete_where()

    def close(self):
        """Release backend resources."""
        pass


def _format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Timestamps are stored as UTC ISO strings so they sort as text."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SQLiteStorage(ContextStorage):
    """
    SQLite-based context storage.

    One table with a UNIQUE (category, key) constraint. Connections are
    thread-local; callers serialize writes.
    """

    # Default database location
    DEFAULT_DB_PATH = ".context_memory/context.db"

    # Schema version for migrations
    SCHEMA_VERSION = 1

    _COLUMNS = (
        "category, key, value, source, confidence, metadata, created_at, "
        "updated_at, last_accessed_at, access_count, reinforcement_count"
    )

    def __init__(
        self,
        db_path: Optional[str] = None,
        auto_create: bool = True,
    ):
        """
        Initialize SQLite storage.

        Args:
            db_path: Path to the database file. If None, uses default.
            auto_create: Whether to create the database if it doesn't exist.
        """
        if db_path is None:
            db_path = str(Path.home() / self.DEFAULT_DB_PATH)

        self.db_path = db_path
        self._local = threading.local()
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()

        if auto_create:
            self._ensure_db_exists()
            self._ensure_schema()

    def _ensure_db_exists(self):
        """Ensure the database directory exists."""
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    @property
    def _conn(self) -> sqlite3.Connection:
        """Get thread-local database connection."""
        if getattr(self._local, "conn", None) is None:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            with self._connections_lock:
                self._connections.append(conn)
            self._local.conn = conn
        return self._local.conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Cursor]:
        """Context manager for database transactions."""
        cursor = self._conn.cursor()
        try:
            yield cursor
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise
        finally:
            cursor.close()

    def _ensure_schema(self):
        """Create the database schema if needed."""
        with self._transaction() as cursor:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY
                )
            """)

            cursor.execute("SELECT version FROM schema_version LIMIT 1")
            row = cursor.fetchone()
            current_version = row["version"] if row else 0

            if current_version < self.SCHEMA_VERSION:
                self._apply_migrations(cursor, current_version)

    def _apply_migrations(self, cursor: sqlite3.Cursor, from_version: int):
        """Apply schema migrations."""
        if from_version < 1:
            cursor.execute("""
                CREATE TABLE IF NOT EXISTS context_items (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    category TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value TEXT NOT NULL,
                    source TEXT NOT NULL,
                    confidence REAL NOT NULL,
                    metadata TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    last_accessed_at TEXT,
                    access_count INTEGER DEFAULT 0,
                    reinforcement_count INTEGER DEFAULT 0,
                    UNIQUE (category, key)
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_context_confidence
                ON context_items(confidence DESC, updated_at DESC)
            """)

            cursor.execute("DELETE FROM schema_version")
            cursor.execute(
                "INSERT INTO schema_version (version) VALUES (?)",
                (self.SCHEMA_VERSION,)
            )

    def _row_values(self, item: ContextItem) -> tuple:
        return (
            item.category.value,
            item.key,
            item.value,
            item.source.value,
            item.confidence,
            json.dumps(item.metadata.to_dict()) if item.metadata else None,
            _format_timestamp(item.created_at),
            _format_timestamp(item.updated_at),
            _format_timestamp(item.last_accessed_at),
            item.access_count,
            item.reinforcement_count,
        )

    def _row_to_item(self, row: sqlite3.Row) -> ContextItem:
        """Convert a database row to a ContextItem."""
        category = ContextCategory.parse(row["category"])
        metadata = json.loads(row["metadata"]) if row["metadata"] else None

        return ContextItem(
            id=row["id"],
            category=category,
            key=row["key"],
            value=row["value"],
            source=ContextSource.parse(row["source"]),
            confidence=row["confidence"],
            metadata=metadata_from_dict(category, metadata),
            created_at=parse_datetime(row["created_at"]),
            updated_at=parse_datetime(row["updated_at"]),
            last_accessed_at=parse_datetime(row["last_accessed_at"]),
            access_count=row["access_count"],
            reinforcement_count=row["reinforcement_count"],
        )

    def insert(self, item: ContextItem) -> ContextItem:
        """Insert a new item."""
        with self._transaction() as cursor:
            cursor.execute(
                f"INSERT INTO context_items ({self._COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._row_values(item),
            )
            item.id = cursor.lastrowid

        logger.debug(f"Stored context item {item.category.value}/{item.key}")
        return item

    def _update_cursor(self, cursor: sqlite3.Cursor, item: ContextItem) -> int:
        cursor.execute("""
            UPDATE context_items SET
                category = ?,
                key = ?,
                value = ?,
                source = ?,
                confidence = ?,
                metadata = ?,
                created_at = ?,
                updated_at = ?,
                last_accessed_at = ?,
                access_count = ?,
                reinforcement_count = ?
            WHERE id = ?
        """, self._row_values(item) + (item.id,))
        return cursor.rowcount

    def update(self, item: ContextItem) -> bool:
        """Update an existing item."""
        with self._transaction() as cursor:
            return self._update_cursor(cursor, item) > 0

    def update_many(self, items: Sequence[ContextItem]) -> int:
        """Update several items in one transaction."""
        updated = 0
        with self._transaction() as cursor:
            for item in items:
                updated += self._update_cursor(cursor, item)
        return updated

    def delete(self, item_id: int) -> bool:
        """Delete an item."""
        with self._transaction() as cursor:
            cursor.execute("DELETE FROM context_items WHERE id = ?", (item_id,))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.debug(f"Deleted context item: {item_id}")
        return deleted

    def delete_where(self, categories: Optional[Sequence[ContextCategory]] = None) -> int:
        """Delete all items, optionally restricted to categories."""
        sql = "DELETE FROM context_items"
        params: List[Any] = []
        if categories:
            placeholders = ",".join("?" * len(categories))
            sql += f" WHERE category IN ({placeholders})"
            params.extend(c.value for c in categories)

        with self._transaction() as cursor:
            cursor.execute(sql, params)
            return cursor.rowcount

    def get(self, category: ContextCategory, key: str) -> Optional[ContextItem]:
        """Fetch one item by identity."""
        with self._transaction() as cursor:
            cursor.execute(
                "SELECT * FROM context_items WHERE category = ? AND key = ?",
                (category.value, key),
            )
            row = cursor.fetchone()

        return self._row_to_item(row) if row else None

    def fetch(
        self,
        categories: Optional[Sequence[ContextCategory]] = None,
        limit: Optional[int] = None,
    ) -> List[ContextItem]:
        """Fetch items sorted by confidence, then recency."""
        sql = "SELECT * FROM context_items"
        params: List[Any] = []
        if categories:
            placeholders = ",".join("?" * len(categories))
            sql += f" WHERE category IN ({placeholders})"
            params.extend(c.value for c in categories)
        sql += " ORDER BY confidence DESC, updated_at DESC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(int(limit))

        with self._transaction() as cursor:
            cursor.execute(sql, params)
            rows = cursor.fetchall()

        return [self._row_to_item(row) for row in rows]

    def count(self) -> int:
        with self._transaction() as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM context_items")
            return cursor.fetchone()["count"]

    def lowest_confidence(self) -> Optional[ContextItem]:
        with self._transaction() as cursor:
            cursor.execute("""
                SELECT * FROM context_items
                ORDER BY confidence ASC, updated_at ASC
                LIMIT 1
            """)
            row = cursor.fetchone()

        return self._row_to_item(row) if row else None

    def get_stats(self) -> MemoryStats:
        """Get storage statistics."""
        stats = MemoryStats()

        with self._transaction() as cursor:
            cursor.execute("SELECT COUNT(*) AS count FROM context_items")
            stats.total_items = cursor.fetchone()["count"]

            cursor.execute("""
                SELECT category, COUNT(*) AS count
                FROM context_items
                GROUP BY category
            """)
            for row in cursor.fetchall():
                stats.items_by_category[row["category"]] = row["count"]

            cursor.execute("""
                SELECT source, COUNT(*) AS count
                FROM context_items
                GROUP BY source
            """)
            for row in cursor.fetchall():
                stats.items_by_source[row["source"]] = row["count"]

            cursor.execute("""
                SELECT
                    AVG(confidence) AS avg_confidence,
                    SUM(access_count) AS total_access,
                    MIN(created_at) AS oldest,
                    MAX(created_at) AS newest
                FROM context_items
            """)
            row = cursor.fetchone()
            stats.average_confidence = row["avg_confidence"] or 0.0
            stats.total_access_count = row["total_access"] or 0
            stats.oldest_item = parse_datetime(row["oldest"])
            stats.newest_item = parse_datetime(row["newest"])

        db_path = Path(self.db_path)
        if db_path.exists():
            stats.total_size_bytes = db_path.stat().st_size

        return stats

    def export_all(self) -> List[Dict[str, Any]]:
        """Export all items as a list of dictionaries."""
        with self._transaction() as cursor:
            cursor.execute("SELECT * FROM context_items ORDER BY created_at")
            rows = cursor.fetchall()

        return [self._row_to_item(row).to_dict() for row in rows]

    def close(self):
        """Close the connections opened by every thread."""
        with self._connections_lock:
            connections, self._connections = self._connections, []
        for conn in connections:
            conn.close()
        self._local = threading.local()

    def clear_all(self) -> int:
        """Remove every item. Use with caution!"""
        removed = self.delete_where()
        self._conn.execute("VACUUM")
        logger.warning("Cleared all context items")
        return removed
