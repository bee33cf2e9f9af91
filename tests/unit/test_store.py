"""Tests for the persisted cache store."""

import json
from datetime import datetime, timezone

import pytest

from tilecache.config import LogConfig, StorageConfig
from tilecache.data.models import (
    AppConfig,
    AppTheme,
    DashboardLayout,
    FetchState,
    LogLevel,
    SidebarState,
    TileLayout,
    TilePosition,
)
from tilecache.data.persistence import MemoryBackend
from tilecache.data.store import DATA_VERSION, STORAGE_KEYS, CacheStore


class FailingBackend(MemoryBackend):
    """Backend whose writes always fail."""

    def set(self, key, value):
        raise OSError("disk full")


class TestLifecycle:
    def test_init_stamps_version(self, store):
        store.init()
        assert store.backend.get(STORAGE_KEYS["VERSION"]) == str(DATA_VERSION)

    def test_init_is_idempotent(self, store):
        store.init()
        store.set_app_config(AppConfig(theme=AppTheme.DARK))
        store.init()
        assert store.get_app_config().theme == AppTheme.DARK

    def test_defaults_without_init(self, store):
        assert store.get_app_config() == AppConfig()
        assert store.get_layout() == DashboardLayout()
        assert store.get_sidebar_state() is None
        assert store.get_tile_state("anything") is None
        assert store.get_logs() == []

    def test_malformed_slice_falls_back_to_default(self, clock):
        backend = MemoryBackend()
        backend.set(STORAGE_KEYS["DASHBOARD"], "{not json")
        store = CacheStore(backend, clock=clock)
        assert store.get_layout() == DashboardLayout()


class TestSlices:
    def test_app_config_persists(self, clock):
        backend = MemoryBackend()
        CacheStore(backend, clock=clock).set_app_config(AppConfig(is_sidebar_collapsed=True, theme=AppTheme.DARK))

        reopened = CacheStore(backend, clock=clock)
        assert reopened.get_app_config() == AppConfig(is_sidebar_collapsed=True, theme=AppTheme.DARK)

    def test_layout_persists(self, clock):
        backend = MemoryBackend()
        layout = DashboardLayout(tiles=[
            TileLayout(id="t1", type="earthquake", position=TilePosition(1, 2), size="large", created_at=5),
        ])
        CacheStore(backend, clock=clock).set_layout(layout)

        assert CacheStore(backend, clock=clock).get_layout() == layout

    def test_sidebar_persists(self, clock):
        backend = MemoryBackend()
        state = SidebarState(active_tiles=["uranium"], is_collapsed=True, last_updated=42)
        CacheStore(backend, clock=clock).set_sidebar_state(state)

        assert CacheStore(backend, clock=clock).get_sidebar_state() == state

    def test_setters_never_raise(self, clock):
        store = CacheStore(FailingBackend(), clock=clock)

        store.set_app_config(AppConfig(theme=AppTheme.DARK))
        store.set_tile_state("k", FetchState(data=1, last_request_timestamp=1, last_request_successful=True))
        store.add_log(LogLevel.ERROR, "api", "boom")

        # In-memory slices still reflect the writes
        assert store.get_app_config().theme == AppTheme.DARK
        assert store.get_tile_state("k").data == 1
        assert len(store.get_logs()) == 1
        assert store.set_cached("k", {"a": 1}) is False


class TestTileState:
    def test_round_trip_with_dates(self, clock):
        backend = MemoryBackend()
        when = datetime(2025, 6, 1, 8, 0, tzinfo=timezone.utc)
        CacheStore(backend, clock=clock).set_tile_state(
            "earthquake", FetchState(data={"at": when}, last_request_timestamp=clock(), last_request_successful=True)
        )

        state = CacheStore(backend, clock=clock).get_tile_state("earthquake")
        assert state.data == {"at": when}
        assert state.last_request_timestamp == clock()
        assert state.last_request_successful is True

    def test_persisted_with_camel_case_keys(self, store, clock):
        store.set_tile_state("k", FetchState(data=None, last_request_timestamp=clock(), last_request_successful=False))
        raw = json.loads(store.backend.get(STORAGE_KEYS["TILE_STATE"]))
        assert raw["k"] == {"data": None, "lastDataRequest": clock(), "lastDataRequestSuccessful": False}

    def test_clear_one_and_all(self, store):
        for key in ("a", "b"):
            store.set_tile_state(key, FetchState(data=key, last_request_timestamp=1, last_request_successful=True))

        store.clear_tile_state("a")
        assert store.tile_state_keys() == ["b"]

        store.clear_tile_state()
        assert store.tile_state_keys() == []


class TestLogs:
    def test_add_log_newest_first(self, store, clock):
        first = store.add_log(LogLevel.ERROR, "api/one", "first")
        clock.advance(1)
        second = store.add_log(LogLevel.WARNING, "api/two", "second", {"status": 500})

        logs = store.get_logs()
        assert [e.id for e in logs] == [second.id, first.id]
        assert logs[0].details == {"status": 500}
        assert logs[0].level == LogLevel.WARNING

    def test_ids_are_unique(self, store):
        ids = {store.add_log(LogLevel.ERROR, "api", "same").id for _ in range(50)}
        assert len(ids) == 50

    def test_retention_window(self, store, clock):
        store.add_log(LogLevel.ERROR, "api", "old")
        clock.advance(3601)
        store.add_log(LogLevel.ERROR, "api", "new")

        assert [e.reason for e in store.get_logs()] == ["new"]

    def test_get_logs_prunes_and_persists(self, store, clock):
        store.add_log(LogLevel.ERROR, "api", "old")
        clock.advance(3601)

        assert store.get_logs() == []
        assert json.loads(store.backend.get(STORAGE_KEYS["LOGS"])) == []

    def test_bounded_size(self, store, clock):
        for i in range(1100):
            store.add_log(LogLevel.ERROR, "api", f"entry {i}")

        logs = store.get_logs()
        assert len(logs) == 1000
        assert logs[0].reason == "entry 1099"
        assert logs[-1].reason == "entry 100"

    def test_custom_log_config(self, clock):
        store = CacheStore(MemoryBackend(), clock=clock, log_config=LogConfig(retention_seconds=10, max_entries=2))
        for i in range(3):
            store.add_log(LogLevel.ERROR, "api", str(i))
        assert [e.reason for e in store.get_logs()] == ["2", "1"]

    def test_remove_and_clear(self, store):
        a = store.add_log(LogLevel.ERROR, "api", "a")
        store.add_log(LogLevel.ERROR, "api", "b")

        store.remove_log(a.id)
        assert [e.reason for e in store.get_logs()] == ["b"]

        store.clear_logs()
        assert store.get_logs() == []

    def test_subscribe_and_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe(lambda logs: seen.append([e.reason for e in logs]))

        store.add_log(LogLevel.ERROR, "api", "one")
        store.clear_logs()
        unsubscribe()
        store.add_log(LogLevel.ERROR, "api", "two")

        assert seen == [["one"], []]

    def test_pruning_on_read_notifies_listeners(self, store, clock):
        seen = []
        store.subscribe(lambda logs: seen.append(len(logs)))
        store.add_log(LogLevel.ERROR, "api", "old")
        clock.advance(3601)

        assert store.get_logs() == []
        assert seen == [1, 0]

    def test_failing_listener_does_not_break_others(self, store):
        seen = []

        def broken(logs):
            raise RuntimeError("listener bug")

        store.subscribe(broken)
        store.subscribe(lambda logs: seen.append(len(logs)))

        store.add_log(LogLevel.ERROR, "api", "one")
        assert seen == [1]


class TestEnvelopes:
    def test_set_and_get_cached(self, store):
        assert store.set_cached("earthquake", {"items": [1]}) is True
        assert store.get_cached("earthquake") == {"items": [1]}
        assert "tile-data-earthquake" in store.tile_data_keys()

    def test_prefix_applied_once(self, store):
        store.set_cached("tile-data-uranium", 1)
        assert store.tile_data_keys() == ["tile-data-uranium"]
        assert store.get_cached("uranium") == 1

    def test_expired_envelope_is_removed(self, store, clock):
        store.set_cached("k", "v", ttl=10)
        clock.advance(11)

        assert store.get_cached("k") is None
        assert store.tile_data_keys() == []

    def test_get_envelope_ignores_expiry(self, store, clock):
        store.set_cached("k", "v", ttl=10)
        clock.advance(11)

        envelope = store.get_envelope("k")
        assert envelope.data == "v"
        assert envelope.is_expired(clock())

    def test_cached_dates_are_revived(self, store):
        when = datetime(2025, 6, 1, tzinfo=timezone.utc)
        store.set_cached("k", {"when": when})
        assert store.get_cached("k") == {"when": when}

    def test_clear_expired(self, store, clock):
        store.set_cached("short", 1, ttl=5)
        store.set_cached("long", 2, ttl=60)
        clock.advance(10)

        assert store.clear_expired() == 1
        assert store.tile_data_keys() == ["tile-data-long"]

    def test_remove_never_touches_reserved_keys(self, store):
        store.add_log(LogLevel.ERROR, "api", "keep me")
        store.remove(STORAGE_KEYS["LOGS"])
        assert store.backend.get(STORAGE_KEYS["LOGS"]) is not None

    def test_custom_prefix(self, clock):
        store = CacheStore(MemoryBackend(), clock=clock, storage_config=StorageConfig(tile_data_prefix="td-"))
        store.set_cached("weather", 1)
        assert store.tile_data_keys() == ["td-weather"]
