"""Shared helpers for fetch attempts: timeout guard and response unwrapping."""

from __future__ import annotations

import asyncio
import functools
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

import requests

from ..errors import TimeoutFailure, UpstreamError

FetchFn = Callable[[], Awaitable[Any]]

LOCKOUT_MESSAGE = "No data (cached error or previous failure)"


def _consume_result(task: "asyncio.Future[Any]") -> None:
    # Orphaned attempts still finish; retrieve their outcome so asyncio
    # does not report "exception was never retrieved".
    if not task.cancelled():
        task.exception()


async def run_with_timeout(fetch_fn: FetchFn, timeout: Optional[float]) -> Any:
    """Await ``fetch_fn()`` for at most ``timeout`` seconds.

    The underlying call is not cancelled when the timeout fires; only the
    awaiting side gives up.

    Raises:
        TimeoutFailure: If the attempt did not finish in time.
    """
    task = asyncio.ensure_future(fetch_fn())
    task.add_done_callback(_consume_result)
    if timeout is None:
        return await task
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError as exc:
        raise TimeoutFailure("Request timeout", exc) from exc


def unwrap_response(raw: Any) -> Tuple[Any, Optional[int]]:
    """Extract the payload and HTTP status from whatever a fetch function returned.

    Accepts a ``requests.Response``, an ``{"status": int, "data": ...}``
    wrapper, or a bare payload. A payload carrying an ``"error"`` key is
    treated as an upstream failure.

    Raises:
        UpstreamError: If the response signals failure.
    """
    status: Optional[int] = None
    payload = raw

    if isinstance(raw, requests.Response):
        status = raw.status_code
        if not raw.ok:
            raise UpstreamError(f"HTTP {status}: {raw.reason or 'request failed'}", status=status)
        content_type = raw.headers.get("content-type", "")
        payload = raw.json() if "application/json" in content_type else raw.text
    elif isinstance(raw, dict) and "data" in raw and isinstance(raw.get("status"), int):
        status = raw["status"]
        payload = raw["data"]

    if isinstance(payload, dict) and "error" in payload:
        raise UpstreamError(str(payload.get("error") or "API error"), status=status)

    return payload, status


def status_of(exc: BaseException) -> Optional[int]:
    """Best-effort HTTP status extraction from a failure."""
    status = getattr(exc, "status", None)
    if isinstance(status, int):
        return status
    response = getattr(exc, "response", None)
    if isinstance(response, requests.Response):
        return response.status_code
    return None


def error_message(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class InFlightRequests:
    """Per-key registry of running fetch tasks.

    Concurrent callers for a key that is already being fetched await the
    same task instead of starting a second upstream call.
    """

    def __init__(self) -> None:
        self._tasks: Dict[str, "asyncio.Task[Any]"] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        task = self._tasks.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._tasks[key] = task
            task.add_done_callback(functools.partial(self._discard, key))
        return await asyncio.shield(task)

    def _discard(self, key: str, task: "asyncio.Task[Any]") -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]

    def __contains__(self, key: object) -> bool:
        return key in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    async def cancel_all(self) -> None:
        """Cancel every running task and wait for them to unwind."""
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
