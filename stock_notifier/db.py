"""SQLite persistence for subscribers and their watch lists."""

from __future__ import annotations

import datetime as _dt
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Set

from .config import SQLITE_DB_PATH
from .stock import Category, WatchList, resolve_category

logger = logging.getLogger(__name__)


def _get_connection() -> sqlite3.Connection:
    Path(SQLITE_DB_PATH).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(SQLITE_DB_PATH)
    conn.execute("PRAGMA foreign_keys = ON")
    return conn

def init_db() -> None:
    """Create tables if they don't exist."""
    with _get_connection() as conn:
        conn.execute("""
          CREATE TABLE IF NOT EXISTS subscribers (
            user_id TEXT PRIMARY KEY,
            created_at TEXT NOT NULL
          )
        """)
        conn.execute("""
          CREATE TABLE IF NOT EXISTS alerts (
            user_id TEXT NOT NULL,
            category TEXT NOT NULL,
            item_id TEXT NOT NULL,
            PRIMARY KEY (user_id, category, item_id)
          )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_alerts_user_id ON alerts(user_id)")
        conn.commit()


def get_subscribers() -> Set[str]:
    with _get_connection() as conn:
        cur = conn.execute("SELECT user_id FROM subscribers")
        return {r[0] for r in cur.fetchall()}

def add_subscriber(user_id: str) -> bool:
    """Insert a subscriber. Returns False if already subscribed."""
    now = _dt.datetime.now(_dt.timezone.utc).isoformat()
    with _get_connection() as conn:
        cur = conn.execute(
            "INSERT OR IGNORE INTO subscribers (user_id, created_at) VALUES (?, ?)",
            (str(user_id), now),
        )
        conn.commit()
        return cur.rowcount > 0

def remove_subscriber(user_id: str) -> bool:
    """Delete a subscriber and their alerts. Returns False if not subscribed."""
    with _get_connection() as conn:
        cur = conn.execute("DELETE FROM subscribers WHERE user_id = ?", (str(user_id),))
        conn.execute("DELETE FROM alerts WHERE user_id = ?", (str(user_id),))
        conn.commit()
        return cur.rowcount > 0

def add_alert(user_id: str, category: str | Category, item_id: str) -> bool:
    cat = resolve_category(category)
    with _get_connection() as conn:
        cur = conn.execute(
            "INSERT OR IGNORE INTO alerts (user_id, category, item_id) VALUES (?, ?, ?)",
            (str(user_id), cat.value, item_id.strip().lower()),
        )
        conn.commit()
        return cur.rowcount > 0

def remove_alert(user_id: str, category: str | Category, item_id: str) -> bool:
    cat = resolve_category(category)
    with _get_connection() as conn:
        cur = conn.execute(
            "DELETE FROM alerts WHERE user_id = ? AND category = ? AND item_id = ?",
            (str(user_id), cat.value, item_id.strip().lower()),
        )
        conn.commit()
        return cur.rowcount > 0

def get_user_alerts(user_id: str) -> Dict[Category, FrozenSet[str]]:
    """Custom watch list for a user; empty dict when they have none."""
    grouped: Dict[Category, set] = {}
    with _get_connection() as conn:
        cur = conn.execute("SELECT category, item_id FROM alerts WHERE user_id = ?", (str(user_id),))
        for category, item_id in cur.fetchall():
            try:
                cat = Category(category)
            except ValueError:
                logger.warning("Ignoring alert row with unknown category %r for %s", category, user_id)
                continue
            grouped.setdefault(cat, set()).add(item_id)
    return {cat: frozenset(ids) for cat, ids in grouped.items()}


class SQLiteStore:
    """The functions above, bundled for SubscriberDirectory."""

    get_subscribers = staticmethod(get_subscribers)
    add_subscriber = staticmethod(add_subscriber)
    remove_subscriber = staticmethod(remove_subscriber)
    get_user_alerts = staticmethod(get_user_alerts)


class SubscriberDirectory:
    """In-process view of the active subscribers.

    Loaded once from the store; subscribe/unsubscribe write through.
    The engine only reads it.
    """

    def __init__(self, store=None) -> None:
        self._store = store if store is not None else SQLiteStore()
        self._lock = threading.Lock()
        self._subscribers: Set[str] = set()

    def load(self) -> int:
        ids = self._store.get_subscribers()
        with self._lock:
            self._subscribers = set(ids)
        logger.info("Loaded %d subscribers", len(ids))
        return len(ids)

    def subscribe(self, user_id: str) -> bool:
        # The set only changes once the store write has gone through.
        with self._lock:
            if user_id in self._subscribers:
                return False
            self._store.add_subscriber(user_id)
            self._subscribers.add(user_id)
        return True

    def unsubscribe(self, user_id: str) -> bool:
        with self._lock:
            if user_id not in self._subscribers:
                return False
            self._store.remove_subscriber(user_id)
            self._subscribers.discard(user_id)
        return True

    def active_subscribers(self) -> FrozenSet[str]:
        with self._lock:
            return frozenset(self._subscribers)

    def __len__(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def watch_list(self, user_id: str) -> Optional[WatchList]:
        alerts = self._store.get_user_alerts(user_id)
        return alerts or None


__all__ = [
    "init_db",
    "get_subscribers",
    "add_subscriber",
    "remove_subscriber",
    "add_alert",
    "remove_alert",
    "get_user_alerts",
    "SQLiteStore",
    "SubscriberDirectory",
]
