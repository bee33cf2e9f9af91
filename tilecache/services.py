"""Wiring of the cache store, registries, fetchers, evictor and log sink.

``DataServices`` is the explicit, injectable replacement for module-level
singletons: build one per application (or per test) and close it when done.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import requests

from .config import Config
from .data.models import now_ms
from .data.persistence import JsonFileBackend, KeyValueBackend
from .data.store import CacheStore
from .fetching.background import SmartFetcher
from .fetching.base import FetchFn
from .fetching.gated import DataFetcher
from .fetching.http import http_fetcher, make_session
from .logsink import ErrorLogSink
from .storage.eviction import QuotaAwareEvictor
from .transforms.base import MapperRegistry, ParserRegistry
from .transforms.builtin import register_builtin_transforms


@dataclass
class DataServices:
    """Container for one application's data services."""

    config: Config
    store: CacheStore
    mappers: MapperRegistry
    parsers: ParserRegistry
    fetcher: DataFetcher
    smart: SmartFetcher
    evictor: QuotaAwareEvictor
    sink: ErrorLogSink
    session: requests.Session

    def http(self, url: str, **kwargs: Any) -> FetchFn:
        """Build an HTTP fetch function on the shared session."""
        return http_fetcher(url, session=self.session, **kwargs)

    async def start(self, install_hooks: bool = True, monitor: bool = True) -> None:
        """Initialize the store and start background services on the running loop."""
        self.store.init()
        if install_hooks:
            self.sink.install(asyncio.get_running_loop())
        if monitor:
            self.evictor.start_monitoring()

    async def close(self) -> None:
        """Stop background and in-flight work, restore hooks and release resources."""
        await self.smart.close()
        await self.fetcher.close()
        await self.evictor.stop_monitoring()
        self.sink.uninstall()
        self.session.close()
        self.store.dispose()

    async def __aenter__(self) -> "DataServices":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


def create_services(
    config: Optional[Config] = None,
    backend: Optional[KeyValueBackend] = None,
    clock: Callable[[], int] = now_ms,
    register_builtins: bool = True,
    session: Optional[requests.Session] = None,
) -> DataServices:
    """Build a fully wired ``DataServices``.

    Args:
        config: Configuration (defaults to ``Config.load()``)
        backend: Storage backend (defaults to JSON files under the data dir)
        clock: Epoch-millisecond clock shared by every component
        register_builtins: Register the stock tile transforms
        session: HTTP session (defaults to one built from the fetch config);
            closed with the services
    """
    config = config or Config.load()
    if backend is None:
        cache_dir = Path(config.data_dir) / "cache" if config.data_dir else None
        backend = JsonFileBackend(cache_dir)

    store = CacheStore(backend, clock=clock, storage_config=config.storage, log_config=config.logs)
    mappers = MapperRegistry()
    parsers = ParserRegistry()
    if register_builtins:
        register_builtin_transforms(mappers, parsers)

    fetcher = DataFetcher(store, mappers, parsers, config.fetch)
    evictor = QuotaAwareEvictor(store, config.storage)
    smart = SmartFetcher(fetcher, evictor, config.fetch)
    sink = ErrorLogSink(store)

    return DataServices(
        config=config,
        store=store,
        mappers=mappers,
        parsers=parsers,
        fetcher=fetcher,
        smart=smart,
        evictor=evictor,
        sink=sink,
        session=session if session is not None else make_session(config.fetch.user_agent),
    )
