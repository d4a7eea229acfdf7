"""Tests for the streakd key-value store."""

import os
import sqlite3
import tempfile

import pytest

from streakd.config import Configuration
from streakd.db import (
    COUNT_KEY,
    SETTINGS_KEY,
    SITE_TYPE_KEY,
    SNOOZE_KEY,
    KeyValueStore,
    StoreError,
    get_connection,
    initialize_defaults,
    state_from_values,
    state_to_values,
)
from streakd.streak import StreakState


@pytest.fixture
def store():
    """Create a temporary database for testing."""
    with tempfile.NamedTemporaryFile(suffix='.db', delete=False) as f:
        db_path = f.name

    try:
        yield KeyValueStore(db_path)
    finally:
        os.unlink(db_path)


class TestSyncAccess:
    """Tests for the blocking API used by the CLI."""

    def test_missing_keys_absent(self, store):
        assert store.get_sync(['nothing']) == {}
        assert store.get_sync([]) == {}

    def test_set_and_get(self, store):
        store.set_sync({'a': 1, 'b': {'x': [1, 2]}, 'c': None})
        assert store.get_sync(['a', 'b', 'c']) == {'a': 1, 'b': {'x': [1, 2]}, 'c': None}

    def test_overwrite(self, store):
        store.set_sync({'a': 1})
        store.set_sync({'a': 2})
        assert store.get_sync(['a']) == {'a': 2}

    def test_set_reports_changes(self, store):
        assert store.set_sync({'a': 1}) == {'a': (None, 1)}
        assert store.set_sync({'a': 1}) == {}
        assert store.set_sync({'a': 2, 'b': 'x'}) == {'a': (1, 2), 'b': (None, 'x')}

    def test_delete(self, store):
        store.set_sync({'a': 1, 'b': 2})
        store.delete_sync(['a'])
        assert store.get_sync(['a', 'b']) == {'b': 2}

    def test_unserializable_value(self, store):
        with pytest.raises(StoreError):
            store.set_sync({'a': object()})

    def test_corrupt_value(self, store):
        with get_connection(store.db_path) as conn:
            conn.execute(
                "INSERT INTO kv_store (key, value, updated_at) VALUES ('a', '{oops', 'now')"
            )
        with pytest.raises(StoreError):
            store.get_sync(['a'])

    def test_missing_table_raises_store_error(self, store):
        with get_connection(store.db_path) as conn:
            conn.execute("DROP TABLE kv_store")
        with pytest.raises(StoreError):
            store.get_sync(['a'])
        with pytest.raises(StoreError):
            store.set_sync({'a': 1})

    def test_unopenable_path(self):
        with pytest.raises(StoreError):
            KeyValueStore("/proc/streakd-test/nope.db")


class TestAsyncAccess:
    """Tests for the async API and the change feed."""

    @pytest.mark.asyncio
    async def test_get_set(self, store):
        await store.set({'a': 1})
        assert await store.get(['a']) == {'a': 1}

    @pytest.mark.asyncio
    async def test_listener_notified(self, store):
        seen = []
        store.subscribe(seen.append)
        await store.set({'a': 1})
        await store.set({'a': 1})
        await store.set({'a': 2})
        assert seen == [{'a': (None, 1)}, {'a': (1, 2)}]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe(seen.append)
        unsubscribe()
        unsubscribe()
        await store.set({'a': 1})
        assert seen == []

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_set(self, store):
        def broken(changes):
            raise RuntimeError("boom")

        seen = []
        store.subscribe(broken)
        store.subscribe(seen.append)
        await store.set({'a': 1})
        assert seen == [{'a': (None, 1)}]
        assert await store.get(['a']) == {'a': 1}


class TestChangeFeed:
    """Changes reach listeners whichever process made them."""

    def test_sync_set_notifies(self, store):
        seen = []
        store.subscribe(seen.append)
        store.set_sync({'a': 1})
        store.set_sync({'a': 1})
        assert seen == [{'a': (None, 1)}]

    @pytest.mark.asyncio
    async def test_write_from_other_store_seen_on_read(self, store):
        seen = []
        store.subscribe(seen.append)
        await store.get(['a'])

        KeyValueStore(store.db_path).set_sync({'a': {'threshold': 3}})

        assert await store.get(['a']) == {'a': {'threshold': 3}}
        assert seen == [{'a': (None, {'threshold': 3})}]

    def test_unchanged_reads_are_quiet(self, store):
        store.set_sync({'a': 1})
        seen = []
        store.subscribe(seen.append)
        store.get_sync(['a'])
        store.get_sync(['a'])
        assert seen == []

    def test_first_read_is_not_a_change(self, store):
        KeyValueStore(store.db_path).set_sync({'a': 1})
        seen = []
        store.subscribe(seen.append)
        store.get_sync(['a'])
        assert seen == []

    def test_external_delete_seen(self, store):
        store.set_sync({'a': 1})
        seen = []
        store.subscribe(seen.append)
        KeyValueStore(store.db_path).delete_sync(['a'])
        assert store.get_sync(['a']) == {}
        assert seen == [{'a': (1, None)}]


class TestStreakStateValues:
    """Tests for mapping StreakState to stored keys."""

    def test_round_trip(self):
        state = StreakState(consecutive_count=3, last_site_type='tiktok', snooze_remaining=2)
        assert state_from_values(state_to_values(state)) == state

    def test_stored_keys(self):
        values = state_to_values(StreakState(consecutive_count=1, last_site_type='x'))
        assert values == {COUNT_KEY: 1, SITE_TYPE_KEY: 'x', SNOOZE_KEY: 0}

    def test_empty_gives_idle(self):
        assert state_from_values({}) == StreakState()

    def test_bad_values_defaulted(self):
        state = state_from_values({COUNT_KEY: "3", SITE_TYPE_KEY: 7, SNOOZE_KEY: -2})
        assert state == StreakState()

    def test_count_without_site_type_dropped(self):
        assert state_from_values({COUNT_KEY: 4, SITE_TYPE_KEY: None}) == StreakState()


class TestInitializeDefaults:

    def test_seeds_empty_store(self, store):
        assert initialize_defaults(store)
        values = store.get_sync([SETTINGS_KEY, COUNT_KEY, SITE_TYPE_KEY])
        assert values[SETTINGS_KEY] == Configuration().to_dict()
        assert values[COUNT_KEY] == 0
        assert values[SITE_TYPE_KEY] is None

    def test_leaves_existing_settings(self, store):
        store.set_sync({SETTINGS_KEY: {'threshold': 2}})
        assert not initialize_defaults(store)
        assert store.get_sync([SETTINGS_KEY]) == {SETTINGS_KEY: {'threshold': 2}}


def test_schema_created(store):
    conn = sqlite3.connect(store.db_path)
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
    finally:
        conn.close()
    assert 'kv_store' in tables
