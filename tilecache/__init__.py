"""tilecache - resilient fetch, transform and cache layer for dashboard tiles."""

from .config import Config, FetchConfig, LogConfig, StorageConfig
from .data import CacheStore, FetchResult, FetchState, JsonFileBackend, LogEntry, LogLevel, MemoryBackend, TileStatus
from .fetching import DataFetcher, SmartFetcher, http_fetcher
from .logsink import ErrorLogSink
from .services import DataServices, create_services
from .storage import QuotaAwareEvictor
from .transforms import BaseMapper, BaseParser, MapperRegistry, ParserRegistry

__version__ = "1.0.0"

__all__ = [
    "Config",
    "FetchConfig",
    "LogConfig",
    "StorageConfig",
    "CacheStore",
    "FetchResult",
    "FetchState",
    "LogEntry",
    "LogLevel",
    "MemoryBackend",
    "JsonFileBackend",
    "TileStatus",
    "DataFetcher",
    "SmartFetcher",
    "http_fetcher",
    "ErrorLogSink",
    "DataServices",
    "create_services",
    "QuotaAwareEvictor",
    "BaseMapper",
    "BaseParser",
    "MapperRegistry",
    "ParserRegistry",
]
