"""Key/value persistence backends for the tile cache.

Values are stored as JSON strings under flat string keys, mirroring the
browser storage the dashboard was built around. Two backends are provided:
- JsonFileBackend: one JSON file per key under ~/.tilecache/cache/
- MemoryBackend: in-process dict, used by tests and short-lived tools
"""

from __future__ import annotations

import json
import os
import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote, unquote

ISO_DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")


def get_data_dir() -> Path:
    """Get user-persistent data directory.

    Returns ~/.tilecache/ by default, or TILECACHE_DATA_DIR env var.
    Creates the cache subdirectory if it doesn't exist.
    """
    data_dir = Path(os.environ.get("TILECACHE_DATA_DIR", Path.home() / ".tilecache"))
    (data_dir / "cache").mkdir(parents=True, exist_ok=True)
    return data_dir


# --- JSON codec ---


def _encode_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "to_dict"):
        return value.to_dict()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def dumps(value: Any) -> str:
    """Serialize a value, writing datetimes as ISO 8601 strings."""
    return json.dumps(value, default=_encode_default, separators=(",", ":"))


def revive_dates(obj: Any) -> Any:
    """Recursively turn ISO 8601 datetime strings back into datetimes."""
    if isinstance(obj, str):
        if ISO_DATETIME_RE.match(obj):
            try:
                return datetime.fromisoformat(obj.replace("Z", "+00:00"))
            except ValueError:
                return obj
        return obj
    if isinstance(obj, list):
        return [revive_dates(v) for v in obj]
    if isinstance(obj, dict):
        return {k: revive_dates(v) for k, v in obj.items()}
    return obj


# --- Backends ---


class KeyValueBackend(ABC):
    """Abstract string key/value storage."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the raw stored string, or None if absent."""

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store a raw string. May raise on quota or I/O failure."""

    @abstractmethod
    def remove(self, key: str) -> None:
        """Remove a key if present."""

    @abstractmethod
    def keys(self) -> List[str]:
        """Return all stored keys."""

    def size_of(self, key: str) -> int:
        """Serialized size of a stored value in bytes (UTF-8)."""
        raw = self.get(key)
        return len(raw.encode("utf-8")) if raw is not None else 0

    def close(self) -> None:
        """Release resources."""

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())


class MemoryBackend(KeyValueBackend):
    """In-memory backend.

    Args:
        quota_bytes: Optional hard quota; writes exceeding it raise
            ``QuotaExceededError`` like browser storage does.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self._items: Dict[str, str] = {}
        self.quota_bytes = quota_bytes

    def get(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set(self, key: str, value: str) -> None:
        if self.quota_bytes is not None:
            used = sum(len(v.encode("utf-8")) for k, v in self._items.items() if k != key)
            if used + len(value.encode("utf-8")) > self.quota_bytes:
                raise QuotaExceededError(f"Quota of {self.quota_bytes} bytes exceeded writing {key!r}")
        self._items[key] = value

    def remove(self, key: str) -> None:
        self._items.pop(key, None)

    def keys(self) -> List[str]:
        return list(self._items.keys())


class JsonFileBackend(KeyValueBackend):
    """File backend storing each key as a JSON file.

    Keys are percent-encoded into file names so arbitrary namespaced keys
    (e.g. ``tile-data-weather:taipei``) are safe on disk.
    """

    def __init__(self, cache_dir: Optional[Path] = None):
        self.cache_dir = cache_dir or (get_data_dir() / "cache")
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.cache_dir / f"{quote(key, safe='')}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        tmp.replace(path)

    def remove(self, key: str) -> None:
        path = self._path(key)
        if path.exists():
            path.unlink()

    def keys(self) -> List[str]:
        return [unquote(p.stem) for p in self.cache_dir.glob("*.json")]

    def size_of(self, key: str) -> int:
        path = self._path(key)
        return path.stat().st_size if path.exists() else 0


class QuotaExceededError(OSError):
    """Raised by a backend when a write would exceed its storage quota."""
