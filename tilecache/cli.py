#!/usr/bin/env python3
"""
tilecache - operator commands for the persisted tile cache.

Shows and clears the retained API log, reports storage utilization and
runs an eviction pass on demand.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .config import Config
from .data.models import LogLevel
from .data.persistence import JsonFileBackend
from .data.store import CacheStore
from .storage.eviction import QuotaAwareEvictor


def _open_store(config: Config) -> CacheStore:
    cache_dir = Path(config.data_dir) / "cache" if config.data_dir else None
    store = CacheStore(JsonFileBackend(cache_dir), storage_config=config.storage, log_config=config.logs)
    store.init()
    return store


def cmd_logs(store: CacheStore, args) -> int:
    logs = store.get_logs()
    if args.level:
        logs = [e for e in logs if e.level == LogLevel(args.level)]
    if args.json:
        print(json.dumps([e.to_dict() for e in logs], indent=2))
        return 0
    if not logs:
        print("No log entries in the retention window.")
        return 0
    for entry in logs[: args.limit]:
        ts = datetime.fromtimestamp(entry.timestamp / 1000, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        print(f"{ts}  {entry.level.value.upper():7}  {entry.api_call:<24} {entry.reason}")
    return 0


def cmd_clear_logs(store: CacheStore, args) -> int:
    store.clear_logs()
    print("Logs cleared.")
    return 0


def cmd_metrics(store: CacheStore, args) -> int:
    metrics = QuotaAwareEvictor(store).get_storage_metrics()
    if args.json:
        print(json.dumps(metrics.to_dict(), indent=2))
        return 0
    print(f"Entries:   {metrics.entry_count}")
    print(f"Used:      {metrics.used_bytes} bytes ({metrics.percentage_used:.2f}%)")
    print(f"Available: {metrics.available_bytes} bytes")
    return 0


def cmd_sweep(store: CacheStore, args) -> int:
    evictor = QuotaAwareEvictor(store)
    removed = evictor.emergency_cleanup() if args.emergency else evictor.preventive_cleanup()
    print(f"Removed {removed} entries.")
    return 0


def parse_args(argv: Optional[List[str]] = None):
    parser = argparse.ArgumentParser(
        description="Tile cache maintenance",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("--config", type=str, help="Path to config YAML file")
    parser.add_argument("--data-dir", type=str, help="Override the data directory")

    sub = parser.add_subparsers(dest="command", required=True)

    logs = sub.add_parser("logs", help="Show retained API log entries")
    logs.add_argument("--level", choices=("warning", "error"), help="Only show one level")
    logs.add_argument("--limit", type=int, default=50, help="Maximum entries to print")
    logs.add_argument("--json", action="store_true", help="Print raw JSON")
    logs.set_defaults(func=cmd_logs)

    clear = sub.add_parser("clear-logs", help="Delete all retained log entries")
    clear.set_defaults(func=cmd_clear_logs)

    metrics = sub.add_parser("metrics", help="Show tile-data storage utilization")
    metrics.add_argument("--json", action="store_true", help="Print raw JSON")
    metrics.set_defaults(func=cmd_metrics)

    sweep = sub.add_parser("sweep", help="Run an eviction pass now")
    sweep.add_argument("--emergency", action="store_true", help="Run the emergency pass")
    sweep.set_defaults(func=cmd_sweep)

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    """Entry point for the tilecache command."""
    args = parse_args(argv)
    config = Config.load(args.config)
    if args.data_dir:
        config.data_dir = args.data_dir
    store = _open_store(config)
    try:
        return args.func(store, args)
    finally:
        store.dispose()


if __name__ == "__main__":
    sys.exit(main())
