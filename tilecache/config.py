"""Configuration management for the tile cache.

Supports YAML-based configuration with defaults matching the dashboard's
freshness, retry, quota and log retention policies.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class FetchConfig:
    """Fetch timing and retry policy."""

    freshness_window: int = 600  # seconds
    timeout: float = 10.0  # seconds per attempt
    retry_backoff: List[float] = field(default_factory=lambda: [1, 2, 5, 10])
    background_refresh_delay: float = 1.0
    user_agent: str = "tilecache/1.0"


@dataclass
class StorageConfig:
    """Storage quota and eviction configuration."""

    capacity_bytes: int = 5 * 1024 * 1024
    max_usage_percentage: float = 80.0  # emergency eviction above this
    cleanup_threshold: float = 70.0  # preventive eviction above this
    emergency_fraction: float = 0.3
    preventive_fraction: float = 0.1
    envelope_ttl: int = 600  # seconds
    sweep_interval: int = 1800  # seconds
    tile_data_prefix: str = "tile-data-"
    priority_tiles: List[str] = field(
        default_factory=lambda: ["cryptocurrency", "precious-metals", "federal-funds-rate"]
    )


@dataclass
class LogConfig:
    """Retained API log configuration."""

    retention_seconds: int = 3600
    max_entries: int = 1000


@dataclass
class Config:
    """Main configuration container."""

    fetch: FetchConfig = field(default_factory=FetchConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logs: LogConfig = field(default_factory=LogConfig)

    # Data directory override
    data_dir: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        fetch_data = data.get("fetch", {})
        fetch = FetchConfig(
            freshness_window=fetch_data.get("freshness_window", 600),
            timeout=fetch_data.get("timeout", 10.0),
            retry_backoff=fetch_data.get("retry_backoff", [1, 2, 5, 10]),
            background_refresh_delay=fetch_data.get("background_refresh_delay", 1.0),
            user_agent=fetch_data.get("user_agent", "tilecache/1.0"),
        )

        storage_data = data.get("storage", {})
        eviction = storage_data.get("eviction", {})
        storage = StorageConfig(
            capacity_bytes=storage_data.get("capacity_bytes", 5 * 1024 * 1024),
            max_usage_percentage=eviction.get("max_usage_percentage", 80.0),
            cleanup_threshold=eviction.get("cleanup_threshold", 70.0),
            emergency_fraction=eviction.get("emergency_fraction", 0.3),
            preventive_fraction=eviction.get("preventive_fraction", 0.1),
            envelope_ttl=storage_data.get("envelope_ttl", 600),
            sweep_interval=eviction.get("sweep_interval", 1800),
            tile_data_prefix=storage_data.get("tile_data_prefix", "tile-data-"),
            priority_tiles=eviction.get("priority_tiles", StorageConfig().priority_tiles),
        )

        logs_data = data.get("logs", {})
        logs = LogConfig(
            retention_seconds=logs_data.get("retention_seconds", 3600),
            max_entries=logs_data.get("max_entries", 1000),
        )

        return cls(
            fetch=fetch,
            storage=storage,
            logs=logs,
            data_dir=data.get("data_dir"),
        )

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load config from YAML file."""
        if not path.exists():
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """Load config from path or defaults.

        Checks in order:
        1. Provided path
        2. TILECACHE_CONFIG env var
        3. ./configs/config.yaml
        4. ./config.yaml
        5. ~/.tilecache/config.yaml
        6. Default config
        """
        paths_to_try = []

        if config_path:
            paths_to_try.append(Path(config_path))

        if env_path := os.environ.get("TILECACHE_CONFIG"):
            paths_to_try.append(Path(env_path))

        paths_to_try.extend([
            Path("./configs/config.yaml"),
            Path("./config.yaml"),
            Path.home() / ".tilecache" / "config.yaml",
        ])

        for path in paths_to_try:
            if path.exists():
                return cls.from_yaml(path)

        return cls()

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "fetch": {
                "freshness_window": self.fetch.freshness_window,
                "timeout": self.fetch.timeout,
                "retry_backoff": list(self.fetch.retry_backoff),
                "background_refresh_delay": self.fetch.background_refresh_delay,
                "user_agent": self.fetch.user_agent,
            },
            "storage": {
                "capacity_bytes": self.storage.capacity_bytes,
                "envelope_ttl": self.storage.envelope_ttl,
                "tile_data_prefix": self.storage.tile_data_prefix,
                "eviction": {
                    "max_usage_percentage": self.storage.max_usage_percentage,
                    "cleanup_threshold": self.storage.cleanup_threshold,
                    "emergency_fraction": self.storage.emergency_fraction,
                    "preventive_fraction": self.storage.preventive_fraction,
                    "sweep_interval": self.storage.sweep_interval,
                    "priority_tiles": list(self.storage.priority_tiles),
                },
            },
            "logs": {
                "retention_seconds": self.logs.retention_seconds,
                "max_entries": self.logs.max_entries,
            },
            "data_dir": self.data_dir,
        }
