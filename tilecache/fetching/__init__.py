"""Fetchers - freshness-gated, retrying and background-refresh policies."""

from .base import LOCKOUT_MESSAGE, InFlightRequests, run_with_timeout, unwrap_response
from .gated import DataFetcher
from .background import SmartFetcher
from .http import close_default_session, default_session, http_fetcher, make_session

__all__ = [
    "LOCKOUT_MESSAGE",
    "InFlightRequests",
    "run_with_timeout",
    "unwrap_response",
    "DataFetcher",
    "SmartFetcher",
    "http_fetcher",
    "default_session",
    "close_default_session",
    "make_session",
]
