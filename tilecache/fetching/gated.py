"""Freshness-gated fetcher.

A fetch for a storage key is skipped while the last attempt is younger
than the freshness window: a successful attempt is served from the store,
a failed one locks the key out until the window passes. ``force_refresh``
bypasses both. Failures are recorded in the retained log and returned as
non-throwing results.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from ..config import FetchConfig
from ..data.models import FetchResult, FetchState, LogLevel, ms_to_datetime
from ..data.store import CacheStore
from ..errors import RegistryLookupError
from ..transforms.base import MapperRegistry, ParserRegistry
from .base import (
    LOCKOUT_MESSAGE,
    FetchFn,
    InFlightRequests,
    error_message,
    run_with_timeout,
    status_of,
    unwrap_response,
)

Transform = Callable[[Any], Any]


class DataFetcher:
    """Orchestrates single fetch attempts under the freshness/lockout policy.

    Args:
        store: Store holding per-key fetch state and the retained log
        mappers: Registry used by ``fetch_and_map``
        parsers: Registry used by ``fetch_and_parse``
        config: Freshness window and attempt timeout
    """

    def __init__(
        self,
        store: CacheStore,
        mappers: Optional[MapperRegistry] = None,
        parsers: Optional[ParserRegistry] = None,
        config: Optional[FetchConfig] = None,
    ):
        self.store = store
        self.mappers = mappers if mappers is not None else MapperRegistry()
        self.parsers = parsers if parsers is not None else ParserRegistry()
        self.config = config or FetchConfig()
        self._in_flight = InFlightRequests()

    @property
    def freshness_window_ms(self) -> int:
        return int(self.config.freshness_window * 1000)

    async def close(self) -> None:
        """Cancel fetches still in flight so nothing is recorded afterwards."""
        await self._in_flight.cancel_all()

    # --- Policy ---

    def check_freshness(self, key: str) -> Optional[FetchResult]:
        """Return the cached outcome if the last attempt is inside the window.

        Returns None when a fetch is needed.
        """
        state = self.store.get_tile_state(key)
        if state is None:
            return None
        if self.store.clock() - state.last_request_timestamp >= self.freshness_window_ms:
            return None

        last_updated = ms_to_datetime(state.last_request_timestamp)
        if state.last_request_successful and state.data is not None:
            return FetchResult(data=state.data, is_cached=True, last_updated=last_updated)
        return FetchResult(
            data=state.data,
            error=LOCKOUT_MESSAGE,
            is_cached=True,
            last_updated=last_updated,
        )

    # --- Attempt bookkeeping ---

    async def attempt(
        self,
        fetch_fn: FetchFn,
        transform: Optional[Transform] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Run one guarded attempt and return the (transformed) payload. May raise."""
        raw = await run_with_timeout(fetch_fn, self.config.timeout if timeout is None else timeout)
        payload, _ = unwrap_response(raw)
        return transform(payload) if transform is not None else payload

    def record_success(self, key: str, data: Any) -> FetchState:
        state = FetchState(data=data, last_request_timestamp=self.store.clock(), last_request_successful=True)
        self.store.set_tile_state(key, state)
        return state

    def record_failure(
        self,
        key: str,
        exc: BaseException,
        *,
        api_call: str,
        retry_count: int = 0,
        force_refresh: bool = False,
    ) -> str:
        """Persist a failed attempt and log it. Returns the error message.

        The last known good data is kept in the failed state.
        """
        message = error_message(exc)
        previous = self.store.get_tile_state(key)
        self.store.set_tile_state(
            key,
            FetchState(
                data=previous.data if previous is not None else None,
                last_request_timestamp=self.store.clock(),
                last_request_successful=False,
            ),
        )

        details = {
            "storageKey": key,
            "retryCount": retry_count,
            "forceRefresh": force_refresh,
            "errorName": type(exc).__name__,
            "errorMessage": message,
        }
        status = status_of(exc)
        if status is not None:
            details["status"] = status
        self.store.add_log(LogLevel.ERROR, api_call, message, details)
        return message

    # --- Entry points ---

    async def fetch(
        self,
        key: str,
        fetch_fn: FetchFn,
        *,
        force_refresh: bool = False,
        api_call: Optional[str] = None,
        timeout: Optional[float] = None,
        transform: Optional[Transform] = None,
    ) -> FetchResult:
        """Fetch ``key`` unless the freshness window says otherwise. Never raises."""
        if not force_refresh:
            cached = self.check_freshness(key)
            if cached is not None:
                return cached

        async def run() -> FetchResult:
            try:
                data = await self.attempt(fetch_fn, transform, timeout)
            except Exception as exc:
                message = self.record_failure(
                    key, exc, api_call=api_call or key, force_refresh=force_refresh
                )
                return FetchResult(data=None, error=message, is_cached=False)
            state = self.record_success(key, data)
            return FetchResult(
                data=data,
                is_cached=False,
                last_updated=ms_to_datetime(state.last_request_timestamp),
            )

        return await self._in_flight.run(key, run)

    async def fetch_and_map(
        self,
        fetch_fn: FetchFn,
        key: str,
        type_id: str,
        *,
        force_refresh: bool = False,
        api_call: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        """Fetch and map through the mapper for ``type_id``.

        Mapping problems never fail the fetch: the mapper's default is
        substituted and a warning is logged.
        """
        mapper = self.mappers.get(type_id)
        if mapper is None:
            return FetchResult(error=str(RegistryLookupError("mapper", type_id)))
        label = api_call or type_id

        def warn(reason: str, details: dict) -> None:
            self.store.add_log(LogLevel.WARNING, label, reason, {"storageKey": key, **details})

        return await self.fetch(
            key,
            fetch_fn,
            force_refresh=force_refresh,
            api_call=label,
            timeout=timeout,
            transform=lambda raw: mapper.safe_map(raw, warn),
        )

    async def fetch_and_parse(
        self,
        fetch_fn: FetchFn,
        key: str,
        type_id: str,
        *,
        force_refresh: bool = False,
        api_call: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> FetchResult:
        """Fetch and parse through the parser for ``type_id``.

        Validation and parse failures are hard errors: recorded as a failed
        attempt and returned as ``{data: None, error}``.
        """
        parser = self.parsers.get(type_id)
        if parser is None:
            return FetchResult(error=str(RegistryLookupError("parser", type_id)))
        return await self.fetch(
            key,
            fetch_fn,
            force_refresh=force_refresh,
            api_call=api_call or type_id,
            timeout=timeout,
            transform=parser.safe_parse,
        )
