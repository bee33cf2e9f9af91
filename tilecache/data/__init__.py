"""Data layer - models, persistence backends and the cache store."""

from .persistence import (
    JsonFileBackend,
    KeyValueBackend,
    MemoryBackend,
    QuotaExceededError,
    get_data_dir,
)
from .models import (
    AppConfig,
    AppTheme,
    CachedEnvelope,
    DashboardLayout,
    FetchResult,
    FetchState,
    LogEntry,
    LogLevel,
    SidebarState,
    StorageMetrics,
    TileLayout,
    TilePosition,
    TileStatus,
    TileStatusData,
    determine_tile_status,
)
from .store import CacheStore, STORAGE_KEYS, DATA_VERSION

__all__ = [
    "JsonFileBackend",
    "KeyValueBackend",
    "MemoryBackend",
    "QuotaExceededError",
    "get_data_dir",
    "AppConfig",
    "AppTheme",
    "CachedEnvelope",
    "DashboardLayout",
    "FetchResult",
    "FetchState",
    "LogEntry",
    "LogLevel",
    "SidebarState",
    "StorageMetrics",
    "TileLayout",
    "TilePosition",
    "TileStatus",
    "TileStatusData",
    "determine_tile_status",
    "CacheStore",
    "STORAGE_KEYS",
    "DATA_VERSION",
]
