"""Quota-aware eviction of tile-data cache envelopes.

Usage is estimated by summing the serialized size of ``tile-data-`` keys
against a fixed capacity. Two passes keep the store under quota:
- preventive (above the cleanup threshold): drop expired envelopes, then
  the oldest share of entries if still above the threshold
- emergency (above the usage ceiling): drop the oldest share of entries,
  non-priority tiles first, until usage is back under the ceiling

Slice keys (app config, layout, tile state, sidebar, logs) are never touched.
"""

from __future__ import annotations

import asyncio
import math
import sys
from typing import List, Optional, Tuple

from ..config import StorageConfig
from ..data.models import StorageMetrics
from ..data.store import RESERVED_KEYS, CacheStore


def _log(msg: str) -> None:
    """Developer diagnostic output (stderr, flushed)."""
    print(msg, file=sys.stderr, flush=True)


class QuotaAwareEvictor:
    """Keeps tile-data usage under the configured thresholds."""

    def __init__(self, store: CacheStore, config: Optional[StorageConfig] = None):
        self.store = store
        self.config = config or store.storage_config
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional["asyncio.Task[None]"] = None

    # --- Metrics ---

    def get_storage_metrics(self) -> StorageMetrics:
        used = 0
        oldest: Optional[int] = None
        newest: Optional[int] = None
        keys = self._evictable_keys()
        for key in keys:
            used += self.store.backend.size_of(key)
            envelope = self.store.get_envelope(key)
            if envelope is None:
                continue
            if oldest is None or envelope.timestamp < oldest:
                oldest = envelope.timestamp
            if newest is None or envelope.timestamp > newest:
                newest = envelope.timestamp

        capacity = self.config.capacity_bytes
        return StorageMetrics(
            used_bytes=used,
            available_bytes=max(0, capacity - used),
            percentage_used=(used / capacity * 100) if capacity else 100.0,
            entry_count=len(keys),
            oldest_timestamp=oldest,
            newest_timestamp=newest,
        )

    def _evictable_keys(self) -> List[str]:
        return [k for k in self.store.tile_data_keys() if k not in RESERVED_KEYS]

    def _is_priority(self, key: str) -> bool:
        return any(tile in key for tile in self.config.priority_tiles)

    def _ranked_keys(self, prefer_non_priority: bool) -> List[str]:
        """Evictable keys ordered by removal preference (first = evict first)."""
        ranked: List[Tuple[int, int, str]] = []
        for key in self._evictable_keys():
            envelope = self.store.get_envelope(key)
            ts = envelope.timestamp if envelope is not None else 0
            priority = 1 if prefer_non_priority and self._is_priority(key) else 0
            ranked.append((priority, ts, key))
        ranked.sort()
        return [key for _, _, key in ranked]

    def _remove(self, keys: List[str]) -> int:
        for key in keys:
            self.store.remove(key)
        return len(keys)

    # --- Passes ---

    def emergency_cleanup(self) -> int:
        """Evict the oldest share of entries until usage is under the ceiling.

        Returns:
            Number of entries removed.
        """
        removed = 0
        last_count = None
        while True:
            metrics = self.get_storage_metrics()
            if metrics.percentage_used <= self.config.max_usage_percentage or metrics.entry_count == 0:
                break
            if metrics.entry_count == last_count:
                _log("[evictor] Emergency cleanup made no progress; giving up")
                break
            last_count = metrics.entry_count
            ranked = self._ranked_keys(prefer_non_priority=True)
            count = max(1, math.floor(len(ranked) * self.config.emergency_fraction))
            removed += self._remove(ranked[:count])
        if removed:
            _log(f"[evictor] Emergency cleanup: removed {removed} items")
        return removed

    def preventive_cleanup(self) -> int:
        """Drop expired entries, then the oldest share if still above the threshold."""
        removed = self.store.clear_expired()
        metrics = self.get_storage_metrics()
        if metrics.percentage_used > self.config.cleanup_threshold:
            ranked = self._ranked_keys(prefer_non_priority=False)
            count = max(1, math.floor(len(ranked) * self.config.preventive_fraction)) if ranked else 0
            removed += self._remove(ranked[:count])
        if removed:
            _log(f"[evictor] Preventive cleanup: removed {removed} items")
        return removed

    def check_before_write(self) -> int:
        """Run the pass matching current usage. Call before writing an envelope."""
        try:
            metrics = self.get_storage_metrics()
            if metrics.percentage_used > self.config.max_usage_percentage:
                return self.emergency_cleanup()
            if metrics.percentage_used > self.config.cleanup_threshold:
                return self.preventive_cleanup()
        except Exception as exc:
            _log(f"[evictor] Cleanup failed: {exc}")
        return 0

    # --- Periodic sweep ---

    def start_monitoring(self) -> "asyncio.Task[None]":
        """Start the periodic preventive sweep on the running loop."""
        if self._task is not None and not self._task.done():
            return self._task
        self._stop_event = asyncio.Event()
        self._task = asyncio.ensure_future(self._sweep_loop(self._stop_event))
        return self._task

    async def stop_monitoring(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            await self._task
        self._task = None
        self._stop_event = None

    @property
    def is_monitoring(self) -> bool:
        return self._task is not None and not self._task.done()

    async def _sweep_loop(self, stop_event: asyncio.Event) -> None:
        interval = self.config.sweep_interval
        _log(f"[evictor] Starting sweep (interval={interval}s)")
        while True:
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
                break
            except asyncio.TimeoutError:
                pass
            try:
                self.preventive_cleanup()
            except Exception as exc:
                _log(f"[evictor] Sweep failed: {exc}")
        _log("[evictor] Stopped")
