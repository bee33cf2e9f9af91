"""Persisted key/value store for dashboard state, tile fetch state and logs.

The store keeps five lazily loaded slices (app config, dashboard layout,
tile fetch state, sidebar state, retained logs) plus TTL-tagged cache
envelopes under namespaced ``tile-data-`` keys. Every setter is total:
persistence failures are reported on the diagnostic channel and never
raised to the caller.
"""

from __future__ import annotations

import json
import sys
import uuid
from typing import Any, Callable, Dict, List, Optional

from ..config import LogConfig, StorageConfig
from .models import (
    AppConfig,
    CachedEnvelope,
    DashboardLayout,
    FetchState,
    LogEntry,
    LogLevel,
    SidebarState,
    now_ms,
)
from .persistence import KeyValueBackend, MemoryBackend, dumps, revive_dates

STORAGE_KEYS = {
    "VERSION": "data-version",
    "APP_CONFIG": "app-config",
    "DASHBOARD": "dashboard-state",
    "TILE_STATE": "tile-state",
    "SIDEBAR": "sidebar-state",
    "LOGS": "logs",
}

# Keys that are never subject to eviction
RESERVED_KEYS = frozenset(STORAGE_KEYS.values())

DATA_VERSION = 1718040000000

LogListener = Callable[[List[LogEntry]], None]


def _log(msg: str) -> None:
    """Developer diagnostic output (stderr, flushed)."""
    print(msg, file=sys.stderr, flush=True)


class CacheStore:
    """Persisted store with lazily initialized slices.

    Args:
        backend: Key/value backend (defaults to an in-memory backend)
        clock: Callable returning epoch milliseconds
        storage_config: Envelope TTL and tile-data key prefix
        log_config: Log retention window and size bound
    """

    def __init__(
        self,
        backend: Optional[KeyValueBackend] = None,
        clock: Callable[[], int] = now_ms,
        storage_config: Optional[StorageConfig] = None,
        log_config: Optional[LogConfig] = None,
    ):
        self.backend = backend if backend is not None else MemoryBackend()
        self.clock = clock
        self.storage_config = storage_config or StorageConfig()
        self.log_config = log_config or LogConfig()
        self._slices: Dict[str, Any] = {}
        self._listeners: List[LogListener] = []
        self._initialized = False

    # --- Lifecycle ---

    def init(self) -> None:
        """Load every slice once and stamp the data version."""
        if self._initialized:
            return
        try:
            raw_version = self.backend.get(STORAGE_KEYS["VERSION"])
            if raw_version != str(DATA_VERSION):
                self.backend.set(STORAGE_KEYS["VERSION"], str(DATA_VERSION))
        except Exception as exc:
            _log(f"[store] Failed to stamp data version: {exc}")
        self._app_config()
        self._dashboard()
        self._tile_states()
        self._sidebar()
        self._logs()
        self._initialized = True

    def dispose(self) -> None:
        """Drop in-memory slices and listeners and close the backend."""
        self._slices.clear()
        self._listeners.clear()
        self._initialized = False
        try:
            self.backend.close()
        except Exception as exc:
            _log(f"[store] Failed to close backend: {exc}")

    @property
    def data_version(self) -> int:
        return DATA_VERSION

    # --- Raw access ---

    def _read(self, key: str, default: Any) -> Any:
        try:
            raw = self.backend.get(key)
            if raw is None:
                return default
            return json.loads(raw)
        except Exception as exc:
            _log(f"[store] Failed to read {key!r}: {exc}")
            return default

    def _write(self, key: str, value: Any) -> bool:
        try:
            self.backend.set(key, dumps(value))
            return True
        except Exception as exc:
            _log(f"[store] Failed to save {key!r}: {exc}")
            return False

    def _slice(self, key: str, loader: Callable[[Any], Any], default: Any) -> Any:
        if key not in self._slices:
            raw = self._read(key, None)
            try:
                self._slices[key] = loader(raw) if raw is not None else default
            except Exception as exc:
                _log(f"[store] Discarding malformed {key!r}: {exc}")
                self._slices[key] = default
        return self._slices[key]

    def _app_config(self) -> AppConfig:
        return self._slice(STORAGE_KEYS["APP_CONFIG"], AppConfig.from_dict, AppConfig())

    def _dashboard(self) -> DashboardLayout:
        return self._slice(STORAGE_KEYS["DASHBOARD"], DashboardLayout.from_dict, DashboardLayout())

    def _tile_states(self) -> Dict[str, FetchState]:
        return self._slice(
            STORAGE_KEYS["TILE_STATE"],
            lambda raw: {k: FetchState.from_dict(v) for k, v in raw.items()},
            {},
        )

    def _sidebar(self) -> Optional[SidebarState]:
        return self._slice(STORAGE_KEYS["SIDEBAR"], SidebarState.from_dict, None)

    def _logs(self) -> List[LogEntry]:
        return self._slice(
            STORAGE_KEYS["LOGS"],
            lambda raw: [LogEntry.from_dict(e) for e in raw],
            [],
        )

    # --- App config / layout / sidebar ---

    def get_app_config(self) -> AppConfig:
        return self._app_config()

    def set_app_config(self, config: AppConfig) -> None:
        self._slices[STORAGE_KEYS["APP_CONFIG"]] = config
        self._write(STORAGE_KEYS["APP_CONFIG"], config.to_dict())

    def get_layout(self) -> DashboardLayout:
        return self._dashboard()

    def set_layout(self, layout: DashboardLayout) -> None:
        self._slices[STORAGE_KEYS["DASHBOARD"]] = layout
        self._write(STORAGE_KEYS["DASHBOARD"], layout.to_dict())

    def get_sidebar_state(self) -> Optional[SidebarState]:
        return self._sidebar()

    def set_sidebar_state(self, state: SidebarState) -> None:
        self._slices[STORAGE_KEYS["SIDEBAR"]] = state
        self._write(STORAGE_KEYS["SIDEBAR"], state.to_dict())

    # --- Tile fetch state ---

    def get_tile_state(self, key: str) -> Optional[FetchState]:
        """Return the last fetch state for ``key``, or None if never fetched."""
        state = self._tile_states().get(key)
        if state is None:
            return None
        return FetchState(
            data=revive_dates(state.data),
            last_request_timestamp=state.last_request_timestamp,
            last_request_successful=state.last_request_successful,
        )

    def set_tile_state(self, key: str, state: FetchState) -> None:
        states = self._tile_states()
        states[key] = state
        self._persist_tile_states(states)

    def clear_tile_state(self, key: Optional[str] = None) -> None:
        """Clear fetch state for one key, or for all keys."""
        states = self._tile_states()
        if key is None:
            states.clear()
        else:
            states.pop(key, None)
        self._persist_tile_states(states)

    def tile_state_keys(self) -> List[str]:
        return list(self._tile_states().keys())

    def _persist_tile_states(self, states: Dict[str, FetchState]) -> None:
        self._write(STORAGE_KEYS["TILE_STATE"], {k: v.to_dict() for k, v in states.items()})

    # --- Retained logs ---

    def _prune(self, logs: List[LogEntry]) -> List[LogEntry]:
        cutoff = self.clock() - self.log_config.retention_seconds * 1000
        kept = [entry for entry in logs if entry.timestamp > cutoff]
        return kept[: self.log_config.max_entries]

    def _save_logs(self, logs: List[LogEntry]) -> None:
        self._slices[STORAGE_KEYS["LOGS"]] = logs
        self._write(STORAGE_KEYS["LOGS"], [e.to_dict() for e in logs])
        self._notify(logs)

    def get_logs(self) -> List[LogEntry]:
        """Return retained logs newest-first, pruning expired entries."""
        logs = self._logs()
        pruned = self._prune(logs)
        if len(pruned) != len(logs):
            self._save_logs(pruned)
        return list(pruned)

    def add_log(
        self,
        level: LogLevel,
        api_call: str,
        reason: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> LogEntry:
        """Record a log entry; assigns its id and timestamp."""
        ts = self.clock()
        entry = LogEntry(
            id=f"{ts}-{uuid.uuid4().hex[:9]}",
            timestamp=ts,
            level=LogLevel(level),
            api_call=api_call,
            reason=reason,
            details=details,
        )
        logs = [entry] + self._logs()
        self._save_logs(self._prune(logs))
        return entry

    def remove_log(self, log_id: str) -> None:
        self._save_logs([e for e in self._logs() if e.id != log_id])

    def clear_logs(self) -> None:
        self._save_logs([])

    def subscribe(self, listener: LogListener) -> Callable[[], None]:
        """Register a listener called with the log list after every change.

        Returns:
            A function that unsubscribes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, logs: List[LogEntry]) -> None:
        for listener in list(self._listeners):
            try:
                listener(list(logs))
            except Exception as exc:
                _log(f"[store] Log listener failed: {exc}")

    # --- Cache envelopes ---

    def envelope_key(self, key: str) -> str:
        """Namespace a storage key under the tile-data prefix."""
        prefix = self.storage_config.tile_data_prefix
        return key if key.startswith(prefix) else f"{prefix}{key}"

    def set_cached(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        """Write ``data`` in a TTL envelope. Returns False if the write failed."""
        now = self.clock()
        ttl_seconds = self.storage_config.envelope_ttl if ttl is None else ttl
        envelope = CachedEnvelope(data=data, timestamp=now, expires_at=now + ttl_seconds * 1000)
        return self._write(self.envelope_key(key), envelope.to_dict())

    def get_envelope(self, key: str) -> Optional[CachedEnvelope]:
        """Return the raw envelope regardless of expiry."""
        raw = self._read(self.envelope_key(key), None)
        if not isinstance(raw, dict):
            return None
        return CachedEnvelope.from_dict(raw)

    def get_cached(self, key: str) -> Optional[Any]:
        """Return unexpired envelope data with dates revived; expired entries are removed."""
        envelope = self.get_envelope(key)
        if envelope is None:
            return None
        if envelope.is_expired(self.clock()):
            self.remove(self.envelope_key(key))
            return None
        return revive_dates(envelope.data)

    def clear_expired(self) -> int:
        """Remove expired tile-data envelopes. Returns the number removed."""
        now = self.clock()
        removed = 0
        for key in self.tile_data_keys():
            envelope = self.get_envelope(key)
            if envelope is None or envelope.is_expired(now):
                self.remove(key)
                removed += 1
        return removed

    def tile_data_keys(self) -> List[str]:
        prefix = self.storage_config.tile_data_prefix
        try:
            return [k for k in self.backend.keys() if k.startswith(prefix)]
        except Exception as exc:
            _log(f"[store] Failed to list keys: {exc}")
            return []

    def remove(self, key: str) -> None:
        """Remove a tile-data key. Reserved slice keys are left alone."""
        if key in RESERVED_KEYS:
            return
        try:
            self.backend.remove(key)
        except Exception as exc:
            _log(f"[store] Failed to remove {key!r}: {exc}")
