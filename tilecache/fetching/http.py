"""HTTP fetch functions backed by a pooled requests session.

Tiles usually fetch over HTTP; ``http_fetcher`` builds the zero-argument
async fetch function the fetchers expect. The blocking request runs in a
worker thread so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import NetworkFailure, TimeoutFailure
from .base import FetchFn

DEFAULT_USER_AGENT = "tilecache/1.0"


def make_session(user_agent: str = DEFAULT_USER_AGENT, retries: int = 2) -> requests.Session:
    """Create a requests session with transport-level retry configuration."""
    session = requests.Session()
    retry = Retry(
        total=retries,
        connect=retries,
        read=retries,
        backoff_factor=0.5,
        status_forcelist=(429, 500, 502, 503, 504),
        allowed_methods=("GET", "HEAD"),
        raise_on_status=False,
    )
    # Limit connection pool to prevent resource exhaustion
    adapter = HTTPAdapter(max_retries=retry, pool_connections=5, pool_maxsize=10)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    session.headers.update({"User-Agent": user_agent})
    return session


_default_session: Optional[requests.Session] = None


def default_session() -> requests.Session:
    """Get or create the shared session used when no session is passed.

    Reuses one session (and connection pool) across fetchers.
    """
    global _default_session
    if _default_session is None:
        _default_session = make_session()
    return _default_session


def close_default_session() -> None:
    global _default_session
    if _default_session is not None:
        _default_session.close()
        _default_session = None


def http_fetcher(
    url: str,
    *,
    session: Optional[requests.Session] = None,
    params: Optional[Dict[str, Any]] = None,
    headers: Optional[Dict[str, str]] = None,
    timeout: float = 20.0,
) -> FetchFn:
    """Build an async fetch function for ``url``.

    The returned coroutine function resolves to the ``requests.Response``;
    status and content-type decoding happen in the fetchers.

    Raises (from the fetch function):
        TimeoutFailure: If the transport timed out.
        NetworkFailure: If the host could not be reached.
    """
    sess = session if session is not None else default_session()

    def _get() -> requests.Response:
        try:
            return sess.get(url, params=params, headers=headers, timeout=timeout)
        except requests.exceptions.Timeout as e:
            raise TimeoutFailure(f"Request timeout: {url}", e) from e
        except requests.exceptions.ConnectionError as e:
            raise NetworkFailure(f"Network error fetching {url}: {e}", e) from e

    async def fetch() -> requests.Response:
        return await asyncio.to_thread(_get)

    return fetch
