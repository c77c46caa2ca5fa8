"""
SQLite Local Cache - Offline / Fast-Path Document Store
=======================================================

Keeps every entity collection (users, reviews, notifications, bookings,
credentials) as JSON documents, one row per record, plus a small key-value
table for single records (client sessions, sentiment memo, review replies).

Each operation opens its own connection and commits on exit, so a single
read-modify-write never tears. Two interleaved operations on the same
record are last-write-wins.
"""

import json
import sqlite3
import logging
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple, Union
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from ...domain.models import User, UserRole, Notification, NotificationType

logger = logging.getLogger(__name__)

DATABASE_FILE = "bustracker.db"

USERS = "users"
REVIEWS = "reviews"
NOTIFICATIONS = "notifications"
BOOKINGS = "bookings"
CREDENTIALS = "credentials"

COLLECTIONS = (USERS, REVIEWS, NOTIFICATIONS, BOOKINGS, CREDENTIALS)


class LocalCache:
    """
    SQLite-backed document cache.

    Usage:
        cache = LocalCache("bustracker.db")
        cache.init()

        cache.put("bookings", booking.id, booking.to_dict())
        docs = cache.all("reviews", newest_first=True)
    """

    def __init__(self, db_path: Union[str, Path] = DATABASE_FILE):
        self.db_path = str(db_path)

    @contextmanager
    def _get_connection(self):
        """Get database connection with context manager."""
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    def init(self):
        """Initialize database tables."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS records (
                    collection TEXT NOT NULL,
                    id TEXT NOT NULL,
                    seq INTEGER NOT NULL,
                    data TEXT NOT NULL,
                    PRIMARY KEY (collection, id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            logger.info(f"Local cache initialized: {self.db_path}")

    # ── Collections ────────────────────────────────────────────────

    def get(self, collection: str, record_id: str) -> Optional[dict]:
        """Get one document by id."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM records WHERE collection = ? AND id = ?",
                (collection, record_id)
            ).fetchone()
            return json.loads(row["data"]) if row else None

    def put(self, collection: str, record_id: str, doc: dict) -> dict:
        """
        Insert or replace a document.
        A replaced document keeps its original position in the collection.
        """
        data = json.dumps(doc)
        with self._get_connection() as conn:
            updated = conn.execute(
                "UPDATE records SET data = ? WHERE collection = ? AND id = ?",
                (data, collection, record_id)
            ).rowcount
            if not updated:
                seq = conn.execute(
                    "SELECT COALESCE(MAX(seq), 0) + 1 FROM records WHERE collection = ?",
                    (collection,)
                ).fetchone()[0]
                conn.execute(
                    "INSERT INTO records (collection, id, seq, data) VALUES (?, ?, ?, ?)",
                    (collection, record_id, seq, data)
                )
        return doc

    def all(self, collection: str, newest_first: bool = False) -> List[dict]:
        """All documents of a collection in insertion order (or reversed)."""
        order = "DESC" if newest_first else "ASC"
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT data FROM records WHERE collection = ? ORDER BY seq {order}",
                (collection,)
            ).fetchall()
            return [json.loads(row["data"]) for row in rows]

    def find(self, collection: str, field: str, value: Any) -> Optional[dict]:
        """First document (insertion order) whose field equals value."""
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT data FROM records WHERE collection = ? "
                "AND json_extract(data, '$.' || ?) = ? ORDER BY seq LIMIT 1",
                (collection, field, value)
            ).fetchone()
            return json.loads(row["data"]) if row else None

    def delete(self, collection: str, record_id: str) -> bool:
        with self._get_connection() as conn:
            deleted = conn.execute(
                "DELETE FROM records WHERE collection = ? AND id = ?",
                (collection, record_id)
            ).rowcount
            return deleted > 0

    def count(self, collection: str) -> int:
        with self._get_connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM records WHERE collection = ?", (collection,)
            ).fetchone()[0]

    def seed(self, collection: str, docs: Iterable[dict]) -> int:
        """Insert docs only if the collection is empty. Returns number inserted."""
        if self.count(collection) > 0:
            return 0
        inserted = 0
        for doc in docs:
            self.put(collection, doc["id"], doc)
            inserted += 1
        logger.info(f"Seeded {inserted} records into '{collection}'")
        return inserted

    # ── Single records ─────────────────────────────────────────────

    def get_value(self, key: str) -> Optional[Any]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
            return json.loads(row["value"]) if row else None

    def set_value(self, key: str, value: Any) -> None:
        with self._get_connection() as conn:
            conn.execute(
                "INSERT INTO kv (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, json.dumps(value))
            )

    def values_with_prefix(self, prefix: str) -> List[Tuple[str, Any]]:
        """(key, value) pairs whose key starts with prefix."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT key, value FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                (len(prefix), prefix)
            ).fetchall()
            return [(row["key"], json.loads(row["value"])) for row in rows]

    def delete_value(self, key: str) -> None:
        with self._get_connection() as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", (key,))


# ── Demo data ──────────────────────────────────────────────────────

def _demo_users() -> List[dict]:
    return [
        User("1", "Admin User", "admin@areyeng.co.za", "password123",
             UserRole.ADMIN, frequent_routes=["T1"]).to_dict(),
        User("2", "Commuter One", "user@gmail.com", "password123").to_dict(),
    ]


def _demo_notifications() -> List[dict]:
    now = datetime.now(timezone.utc)
    return [
        Notification(
            "1",
            "Major Delay on T1 Route",
            "Due to roadworks on Nana Sita street, expect delays of up to 15 minutes on the T1 route.",
            NotificationType.DELAY,
            (now - timedelta(hours=2)).isoformat(),
        ).to_dict(),
        Notification(
            "2",
            "Schedule Update: Public Holiday",
            "Buses will operate on a Saturday schedule this coming Friday due to the public holiday.",
            NotificationType.SCHEDULE_CHANGE,
            (now - timedelta(days=1)).isoformat(),
        ).to_dict(),
    ]


def init_with_seed_data(db_path: Union[str, Path] = DATABASE_FILE) -> LocalCache:
    """Initialize the cache and seed demo users/notifications on first run."""
    cache = LocalCache(db_path)
    cache.init()
    cache.seed(USERS, _demo_users())
    # Stored newest-first, so insert oldest first
    cache.seed(NOTIFICATIONS, reversed(_demo_notifications()))
    return cache
