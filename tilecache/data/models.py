"""Data models for the tile cache.

This module defines the persisted and derived structures shared by the
store, the fetchers and the evictor, following these conventions:

1. TIMESTAMPS
   - Persisted timestamps are integer epoch milliseconds
   - In-memory convenience fields (``last_updated``) are ``datetime``

2. WIRE NAMES
   - Persisted dictionaries use the dashboard's camelCase keys
     (``lastDataRequest``, ``apiCall``, ``expiresAt``)
   - ``to_dict`` / ``from_dict`` translate between the two

3. LOG LEVELS
   - Retained log entries are either WARNING or ERROR
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Generic, List, Optional, TypeVar, Union

T = TypeVar("T")


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def ms_to_datetime(ms: Optional[int]) -> Optional[datetime]:
    """Convert epoch milliseconds to an aware UTC datetime."""
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


# =============================================================================
# Enumerations
# =============================================================================


class LogLevel(str, Enum):
    """Severity of a retained log entry."""

    WARNING = "warning"  # Recovered locally (e.g. default substituted)
    ERROR = "error"  # Surfaced to the caller as a failed result


class AppTheme(str, Enum):
    """Dashboard color theme."""

    LIGHT = "light"
    DARK = "dark"


class TileStatus(str, Enum):
    """Health of a tile's data as shown to the user."""

    OK = "OK"  # Last request succeeded and data is available
    STALE = "STALE"  # Last request failed but known-good data is available
    ERROR = "ERROR"  # Nothing usable to show


# Outcome labels accepted by ``determine_tile_status``
REQUEST_SUCCESS = "success"
REQUEST_FAILED = ("error", "failure")


def determine_tile_status(last_request_result: Optional[str], has_local_data: bool) -> TileStatus:
    """Classify a tile from its last request outcome and local data availability."""
    if last_request_result == REQUEST_SUCCESS and has_local_data:
        return TileStatus.OK
    if last_request_result in REQUEST_FAILED:
        return TileStatus.STALE if has_local_data else TileStatus.ERROR
    return TileStatus.ERROR


# =============================================================================
# Fetch state and results
# =============================================================================


@dataclass
class FetchState(Generic[T]):
    """Outcome of the most recent fetch attempt for one storage key.

    Overwritten wholesale on every attempt. A failed attempt may still carry
    the last known good ``data``.
    """

    data: Optional[T]
    last_request_timestamp: int  # Unit: epoch ms
    last_request_successful: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": self.data,
            "lastDataRequest": self.last_request_timestamp,
            "lastDataRequestSuccessful": self.last_request_successful,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FetchState":
        return cls(
            data=data.get("data"),
            last_request_timestamp=int(data.get("lastDataRequest", 0)),
            last_request_successful=bool(data.get("lastDataRequestSuccessful", False)),
        )

    @property
    def status(self) -> TileStatus:
        outcome = REQUEST_SUCCESS if self.last_request_successful else "failure"
        return determine_tile_status(outcome, self.data is not None)


@dataclass
class FetchResult(Generic[T]):
    """Non-throwing result returned by every fetch entry point."""

    data: Optional[T] = None
    error: Optional[str] = None
    is_cached: bool = False
    last_updated: Optional[datetime] = None
    retry_count: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None and self.data is not None

    @property
    def status(self) -> TileStatus:
        """OK, STALE (error but data to show) or ERROR."""
        outcome = REQUEST_SUCCESS if self.error is None else "error"
        return determine_tile_status(outcome, self.data is not None)


@dataclass
class CachedEnvelope(Generic[T]):
    """TTL-tagged payload stored under a tile-data key."""

    data: T
    timestamp: int  # Unit: epoch ms
    expires_at: int  # Unit: epoch ms

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def to_dict(self) -> Dict[str, Any]:
        return {"data": self.data, "timestamp": self.timestamp, "expiresAt": self.expires_at}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CachedEnvelope":
        return cls(
            data=data.get("data"),
            timestamp=int(data.get("timestamp", 0)),
            expires_at=int(data.get("expiresAt", 0)),
        )


# =============================================================================
# Retained log
# =============================================================================


Scalar = Union[str, int, float, bool, None]


@dataclass
class LogEntry:
    """A structured, retained API log entry."""

    id: str
    timestamp: int  # Unit: epoch ms
    level: LogLevel
    api_call: str
    reason: str
    details: Optional[Dict[str, Scalar]] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp,
            "level": self.level.value,
            "apiCall": self.api_call,
            "reason": self.reason,
        }
        if self.details is not None:
            out["details"] = self.details
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LogEntry":
        try:
            level = LogLevel(data.get("level", "error"))
        except ValueError:
            level = LogLevel.ERROR
        return cls(
            id=str(data["id"]),
            timestamp=int(data["timestamp"]),
            level=level,
            api_call=str(data.get("apiCall", "")),
            reason=str(data.get("reason", "")),
            details=data.get("details"),
        )


# =============================================================================
# Dashboard slices
# =============================================================================


@dataclass
class AppConfig:
    """Persisted application preferences."""

    is_sidebar_collapsed: bool = False
    theme: AppTheme = AppTheme.LIGHT

    def to_dict(self) -> Dict[str, Any]:
        return {"isSidebarCollapsed": self.is_sidebar_collapsed, "theme": self.theme.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AppConfig":
        try:
            theme = AppTheme(data.get("theme", "light"))
        except ValueError:
            theme = AppTheme.LIGHT
        return cls(is_sidebar_collapsed=bool(data.get("isSidebarCollapsed", False)), theme=theme)


@dataclass
class TilePosition:
    x: int = 0
    y: int = 0


@dataclass
class TileLayout:
    """Placement of a single tile on the dashboard grid."""

    id: str
    type: str
    position: TilePosition = field(default_factory=TilePosition)
    size: str = "medium"
    created_at: int = 0  # Unit: epoch ms
    config: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "position": {"x": self.position.x, "y": self.position.y},
            "size": self.size,
            "createdAt": self.created_at,
            "config": self.config,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TileLayout":
        pos = data.get("position") or {}
        return cls(
            id=str(data["id"]),
            type=str(data["type"]),
            position=TilePosition(x=int(pos.get("x", 0)), y=int(pos.get("y", 0))),
            size=str(data.get("size", "medium")),
            created_at=int(data.get("createdAt", 0)),
            config=dict(data.get("config") or {}),
        )


@dataclass
class DashboardLayout:
    """Persisted tile layout."""

    tiles: List[TileLayout] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"tiles": [t.to_dict() for t in self.tiles]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DashboardLayout":
        return cls(tiles=[TileLayout.from_dict(t) for t in data.get("tiles", [])])


@dataclass
class SidebarState:
    """Persisted sidebar selection."""

    active_tiles: List[str] = field(default_factory=list)
    is_collapsed: bool = False
    last_updated: int = 0  # Unit: epoch ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "activeTiles": list(self.active_tiles),
            "isCollapsed": self.is_collapsed,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SidebarState":
        return cls(
            active_tiles=list(data.get("activeTiles", [])),
            is_collapsed=bool(data.get("isCollapsed", False)),
            last_updated=int(data.get("lastUpdated", 0)),
        )


# =============================================================================
# Derived metrics
# =============================================================================


@dataclass
class StorageMetrics:
    """Estimated storage utilization of tile-data entries (not persisted)."""

    used_bytes: int
    available_bytes: int
    percentage_used: float  # Unit: percent (0-100)
    entry_count: int
    oldest_timestamp: Optional[int] = None  # Unit: epoch ms
    newest_timestamp: Optional[int] = None  # Unit: epoch ms

    def to_dict(self) -> Dict[str, Any]:
        return {
            "used_bytes": self.used_bytes,
            "available_bytes": self.available_bytes,
            "percentage_used": round(self.percentage_used, 2),
            "entry_count": self.entry_count,
            "oldest_timestamp": self.oldest_timestamp,
            "newest_timestamp": self.newest_timestamp,
        }


@dataclass
class TileStatusData:
    """Status snapshot for one tile (not persisted)."""

    status: TileStatus
    last_request_result: Optional[str]  # "success", "error", "failure" or None
    has_local_data: bool
    last_update: datetime
    error_message: Optional[str] = None

    @classmethod
    def create(
        cls,
        last_request_result: Optional[str],
        has_local_data: bool,
        error_message: Optional[str] = None,
    ) -> "TileStatusData":
        return cls(
            status=determine_tile_status(last_request_result, has_local_data),
            last_request_result=last_request_result,
            has_local_data=has_local_data,
            last_update=datetime.now(timezone.utc),
            error_message=error_message,
        )

    @classmethod
    def from_result(cls, result: FetchResult) -> "TileStatusData":
        """Snapshot the status of a fetch result."""
        return cls.create(
            REQUEST_SUCCESS if result.error is None else "error",
            result.data is not None,
            result.error,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "lastRequestResult": self.last_request_result,
            "hasLocalData": self.has_local_data,
            "lastUpdate": self.last_update.isoformat(),
            "errorMessage": self.error_message,
        }
