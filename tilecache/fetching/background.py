"""Retrying fetcher with stale-while-revalidate background refresh.

Loads cached data immediately when available and refreshes it out of
band; falls back to sequential retries with backoff when nothing is cached.
"""

from __future__ import annotations

import asyncio
import sys
from typing import Any, List, Optional, Set

from ..config import FetchConfig
from ..data.models import FetchResult, ms_to_datetime
from ..storage.eviction import QuotaAwareEvictor
from .base import FetchFn, InFlightRequests, error_message
from .gated import DataFetcher


def _log(msg: str) -> None:
    """Developer diagnostic output (stderr, flushed)."""
    print(msg, file=sys.stderr, flush=True)


class SmartFetcher:
    """Retry and background-refresh policy on top of a ``DataFetcher``.

    Successful results are written both to the fetch state (freshness and
    lockout) and to a TTL envelope under the tile-data namespace (stale
    reads and eviction).

    Background refreshes are tracked tasks owned by this object;
    ``close()`` cancels any that are still pending.
    """

    def __init__(
        self,
        fetcher: DataFetcher,
        evictor: Optional[QuotaAwareEvictor] = None,
        config: Optional[FetchConfig] = None,
    ):
        self.fetcher = fetcher
        self.store = fetcher.store
        self.evictor = evictor
        self.config = config or fetcher.config
        self.retry_delays: List[float] = list(self.config.retry_backoff)
        self._in_flight = InFlightRequests()
        self._pending: Set["asyncio.Task[Any]"] = set()
        self._closed = False

    @property
    def pending_refreshes(self) -> List["asyncio.Task[Any]"]:
        return list(self._pending)

    async def fetch_with_retry(
        self,
        fetch_fn: FetchFn,
        key: str,
        *,
        force_refresh: bool = False,
        timeout: Optional[float] = None,
        fallback_to_cache: bool = True,
        api_call: Optional[str] = None,
    ) -> FetchResult:
        """Fetch with backoff retries. Never raises.

        On exhaustion a single error entry is logged; with
        ``fallback_to_cache`` the cached envelope is returned if one exists.
        """
        if not force_refresh:
            cached = self.fetcher.check_freshness(key)
            if cached is not None:
                return cached

        return await self._in_flight.run(
            key,
            lambda: self._retry_loop(fetch_fn, key, force_refresh, timeout, fallback_to_cache, api_call or key),
        )

    async def _retry_loop(
        self,
        fetch_fn: FetchFn,
        key: str,
        force_refresh: bool,
        timeout: Optional[float],
        fallback_to_cache: bool,
        api_call: str,
    ) -> FetchResult:
        retry_count = 0
        while True:
            try:
                data = await self.fetcher.attempt(fetch_fn, timeout=timeout)
                break
            except Exception as exc:
                if retry_count < len(self.retry_delays):
                    delay = self.retry_delays[retry_count]
                    retry_count += 1
                    _log(f"[{key}] Attempt failed ({error_message(exc)}); retry {retry_count} in {delay}s")
                    await asyncio.sleep(delay)
                    continue

                message = self.fetcher.record_failure(
                    key, exc, api_call=api_call, retry_count=retry_count, force_refresh=force_refresh
                )
                if fallback_to_cache:
                    envelope = self.store.get_envelope(key)
                    cached = self.store.get_cached(key)
                    if cached is not None and envelope is not None:
                        return FetchResult(
                            data=cached,
                            error=f"Using cached data due to: {message}",
                            is_cached=True,
                            last_updated=ms_to_datetime(envelope.timestamp),
                            retry_count=retry_count,
                        )
                return FetchResult(data=None, error=message, is_cached=False, retry_count=retry_count)

        state = self.fetcher.record_success(key, data)
        self._write_envelope(key, data)
        return FetchResult(
            data=data,
            is_cached=False,
            last_updated=ms_to_datetime(state.last_request_timestamp),
            retry_count=retry_count,
        )

    def _write_envelope(self, key: str, data: Any) -> None:
        if self.evictor is not None:
            self.evictor.check_before_write()
        if self.store.set_cached(key, data):
            return
        # Write refused (quota); make room once and retry
        if self.evictor is not None and self.evictor.emergency_cleanup():
            self.store.set_cached(key, data)

    async def fetch_with_background_refresh(
        self,
        fetch_fn: FetchFn,
        key: str,
        *,
        timeout: Optional[float] = None,
        api_call: Optional[str] = None,
    ) -> FetchResult:
        """Serve cached data now and refresh it in the background.

        Without cached data this is a plain ``fetch_with_retry``.
        """
        envelope = self.store.get_envelope(key)
        cached = self.store.get_cached(key)
        if cached is not None and envelope is not None:
            self.schedule_refresh(fetch_fn, key, timeout=timeout, api_call=api_call)
            return FetchResult(
                data=cached,
                is_cached=True,
                last_updated=ms_to_datetime(envelope.timestamp),
            )
        return await self.fetch_with_retry(fetch_fn, key, timeout=timeout, api_call=api_call)

    def schedule_refresh(
        self,
        fetch_fn: FetchFn,
        key: str,
        *,
        timeout: Optional[float] = None,
        api_call: Optional[str] = None,
    ) -> Optional["asyncio.Task[Any]"]:
        """Schedule a forced refresh after the configured delay."""
        if self._closed:
            return None
        task = asyncio.ensure_future(self._refresh_later(fetch_fn, key, timeout, api_call))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _refresh_later(
        self,
        fetch_fn: FetchFn,
        key: str,
        timeout: Optional[float],
        api_call: Optional[str],
    ) -> FetchResult:
        await asyncio.sleep(self.config.background_refresh_delay)
        # No cache fallback: the stale value already handed out stays authoritative
        result = await self.fetch_with_retry(
            fetch_fn,
            key,
            force_refresh=True,
            timeout=timeout,
            fallback_to_cache=False,
            api_call=api_call,
        )
        if result.error:
            _log(f"[{key}] Background refresh failed: {result.error}")
        return result

    async def close(self) -> None:
        """Cancel pending background refreshes and refuse new ones."""
        self._closed = True
        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        await self._in_flight.cancel_all()
