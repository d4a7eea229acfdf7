"""
SQLite-backed key-value store for streakd.

Holds the tracking settings and the streak counters under the same keys the
browser extension uses ('settings', 'currentCount', 'lastSiteType',
'snoozeCountRemaining'). Values are stored as JSON text.

The daemon uses the async methods, which run the blocking sqlite work in a
worker thread; the CLI uses the *_sync variants directly.
"""

import asyncio
import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from .config import DEFAULT_DB_PATH, Configuration
from .streak import StreakState

log = logging.getLogger("streakd.db")

SETTINGS_KEY = 'settings'
COUNT_KEY = 'currentCount'
SITE_TYPE_KEY = 'lastSiteType'
SNOOZE_KEY = 'snoozeCountRemaining'

STATE_KEYS = (COUNT_KEY, SITE_TYPE_KEY, SNOOZE_KEY)
ALL_KEYS = (SETTINGS_KEY,) + STATE_KEYS

# key -> (old_value, new_value)
ChangeSet = dict[str, tuple[Any, Any]]
ChangeListener = Callable[[ChangeSet], None]


class StoreError(Exception):
    """Raised when the store cannot be read or written."""


def init_db(db_path: str = DEFAULT_DB_PATH) -> None:
    """Initialize database schema."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    with get_connection(db_path) as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv_store (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
        """)


@contextmanager
def get_connection(db_path: str = DEFAULT_DB_PATH):
    """Context manager for database connections."""
    conn = sqlite3.connect(db_path, timeout=5)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


class KeyValueStore:
    """Persistent key-value store with a change feed."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path
        try:
            init_db(db_path)
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Cannot open store at {db_path}: {e}") from e
        self._listeners: list[ChangeListener] = []
        # key -> raw JSON last read or written here (None if absent)
        self._seen: dict[str, Optional[str]] = {}
        self._seen_lock = threading.Lock()

    def _read(self, keys: list[str]) -> tuple[dict[str, Any], ChangeSet]:
        """
        Fetch values for keys, plus the changes made since they were last seen.

        Other processes (the CLI) write to the same database, so a read is
        where their writes show up.
        """
        if not keys:
            return {}, {}
        placeholders = ', '.join('?' * len(keys))
        try:
            with get_connection(self.db_path) as conn:
                rows = conn.execute(
                    f"SELECT key, value FROM kv_store WHERE key IN ({placeholders})",
                    keys
                ).fetchall()
            raw = {row['key']: row['value'] for row in rows}
            values = {key: json.loads(value) for key, value in raw.items()}
        except (sqlite3.Error, json.JSONDecodeError) as e:
            raise StoreError(f"Store read failed: {e}") from e

        changes = {}
        with self._seen_lock:
            for key in keys:
                current = raw.get(key)
                if key in self._seen and self._seen[key] != current:
                    old_raw = self._seen[key]
                    old = json.loads(old_raw) if old_raw is not None else None
                    changes[key] = (old, values.get(key))
                self._seen[key] = current
        return values, changes

    def _write(self, values: dict[str, Any]) -> ChangeSet:
        if not values:
            return {}
        now = datetime.now().isoformat()
        try:
            encoded = {k: json.dumps(v) for k, v in values.items()}
        except (TypeError, ValueError) as e:
            raise StoreError(f"Value not serializable: {e}") from e

        try:
            with get_connection(self.db_path) as conn:
                placeholders = ', '.join('?' * len(encoded))
                rows = conn.execute(
                    f"SELECT key, value FROM kv_store WHERE key IN ({placeholders})",
                    list(encoded)
                ).fetchall()
                previous = {row['key']: row['value'] for row in rows}

                conn.executemany("""
                    INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                """, [(k, v, now) for k, v in encoded.items()])
        except sqlite3.Error as e:
            raise StoreError(f"Store write failed: {e}") from e

        changes = {}
        with self._seen_lock:
            for key, raw in encoded.items():
                old_raw = previous.get(key)
                if old_raw != raw:
                    old = json.loads(old_raw) if old_raw is not None else None
                    changes[key] = (old, values[key])
                self._seen[key] = raw
        return changes

    # --- Sync API ---

    def get_sync(self, keys: Iterable[str]) -> dict[str, Any]:
        """Fetch values for keys. Missing keys are absent from the result."""
        values, changes = self._read(list(keys))
        if changes:
            self._notify(changes)
        return values

    def set_sync(self, values: dict[str, Any]) -> ChangeSet:
        """Write values, returning the keys whose value actually changed."""
        changes = self._write(dict(values))
        if changes:
            self._notify(changes)
        return changes

    def delete_sync(self, keys: Iterable[str]):
        keys = list(keys)
        if not keys:
            return
        placeholders = ', '.join('?' * len(keys))
        try:
            with get_connection(self.db_path) as conn:
                conn.execute(f"DELETE FROM kv_store WHERE key IN ({placeholders})", keys)
        except sqlite3.Error as e:
            raise StoreError(f"Store delete failed: {e}") from e
        with self._seen_lock:
            for key in keys:
                self._seen[key] = None

    # --- Async API ---
    # Listeners run on the event loop, never in the worker thread

    async def get(self, keys: Iterable[str]) -> dict[str, Any]:
        values, changes = await asyncio.to_thread(self._read, list(keys))
        if changes:
            self._notify(changes)
        return values

    async def set(self, values: dict[str, Any]) -> ChangeSet:
        changes = await asyncio.to_thread(self._write, dict(values))
        if changes:
            self._notify(changes)
        return changes

    # --- Change feed ---

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change listener. Returns a function that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, changes: ChangeSet):
        for listener in list(self._listeners):
            try:
                listener(changes)
            except Exception as e:
                log.error(f"Change listener {listener!r} failed: {e}", exc_info=True)


# --- Settings and streak state ---

def configuration_from_values(values: dict[str, Any]) -> Configuration:
    return Configuration.from_dict(values.get(SETTINGS_KEY))


def state_from_values(values: dict[str, Any]) -> StreakState:
    """Build a StreakState from stored values, defaulting anything missing."""
    count = values.get(COUNT_KEY)
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        count = 0

    site_type = values.get(SITE_TYPE_KEY)
    if not isinstance(site_type, str) or not site_type:
        site_type = None

    snooze = values.get(SNOOZE_KEY)
    if isinstance(snooze, bool) or not isinstance(snooze, int) or snooze < 0:
        snooze = 0

    # A count without a site type can't be continued
    if site_type is None:
        count = 0

    return StreakState(
        consecutive_count=count,
        last_site_type=site_type,
        snooze_remaining=snooze,
    )


def state_to_values(state: StreakState) -> dict[str, Any]:
    return {
        COUNT_KEY: state.consecutive_count,
        SITE_TYPE_KEY: state.last_site_type,
        SNOOZE_KEY: state.snooze_remaining,
    }


def initialize_defaults(store: KeyValueStore, defaults: Optional[Configuration] = None) -> bool:
    """
    Seed settings and zeroed state on first run.

    Returns True if the store was empty and got seeded.
    """
    if store.get_sync([SETTINGS_KEY]):
        return False

    values = {SETTINGS_KEY: (defaults or Configuration()).to_dict()}
    values.update(state_to_values(StreakState()))
    store.set_sync(values)
    log.info(f"Initialized default settings in {store.db_path}")
    return True
