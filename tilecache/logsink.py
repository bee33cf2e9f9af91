"""Funnel errors and warnings into the retained, structured API log.

Console output is suppressed while an entry is written so a failure shows
up once (in the log view) instead of twice. Process-wide hooks route
uncaught exceptions, uncaught thread exceptions and unretrieved asyncio
task exceptions into the same log under the ``global`` call-site label.
"""

from __future__ import annotations

import asyncio
import contextlib
import io
import sys
import threading
import warnings
from typing import Any, Dict, Optional

from .data.models import LogEntry, LogLevel
from .data.store import CacheStore

GLOBAL_CALL_SITE = "global"


class ErrorLogSink:
    """Writes structured log entries and owns the global error hooks."""

    def __init__(self, store: CacheStore):
        self.store = store
        self._installed = False
        self._prev_excepthook = None
        self._prev_threading_hook = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._prev_loop_handler = None

    def _write(self, level: LogLevel, api_call: str, reason: str, details: Optional[Dict[str, Any]]) -> LogEntry:
        with contextlib.redirect_stderr(io.StringIO()), warnings.catch_warnings():
            warnings.simplefilter("ignore")
            return self.store.add_log(level, api_call, reason, details)

    def intercept_error(self, api_call: str, reason: str, details: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self._write(LogLevel.ERROR, api_call, reason, details)

    def intercept_warning(self, api_call: str, reason: str, details: Optional[Dict[str, Any]] = None) -> LogEntry:
        return self._write(LogLevel.WARNING, api_call, reason, details)

    def record_exception(
        self,
        exc: BaseException,
        api_call: str = GLOBAL_CALL_SITE,
        extra: Optional[Dict[str, Any]] = None,
    ) -> LogEntry:
        details: Dict[str, Any] = {"errorName": type(exc).__name__}
        if extra:
            details.update(extra)
        return self.intercept_error(api_call, str(exc) or type(exc).__name__, details)

    # --- Global hooks ---

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Install process-wide hooks (and the loop handler if a loop is given)."""
        if self._installed:
            return
        self._prev_excepthook = sys.excepthook
        self._prev_threading_hook = threading.excepthook
        sys.excepthook = self._excepthook
        threading.excepthook = self._threading_excepthook
        if loop is not None:
            self._loop = loop
            self._prev_loop_handler = loop.get_exception_handler()
            loop.set_exception_handler(self._loop_exception_handler)
        self._installed = True

    def uninstall(self) -> None:
        """Restore the hooks that were active before ``install``."""
        if not self._installed:
            return
        sys.excepthook = self._prev_excepthook or sys.__excepthook__
        threading.excepthook = self._prev_threading_hook or threading.__excepthook__
        if self._loop is not None:
            self._loop.set_exception_handler(self._prev_loop_handler)
            self._loop = None
        self._installed = False

    @property
    def installed(self) -> bool:
        return self._installed

    def _excepthook(self, exc_type, exc, tb) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            (self._prev_excepthook or sys.__excepthook__)(exc_type, exc, tb)
            return
        self.record_exception(exc)

    def _threading_excepthook(self, args: "threading.ExceptHookArgs") -> None:
        if args.exc_value is None:
            return
        extra = {"thread": args.thread.name} if args.thread is not None else None
        self.record_exception(args.exc_value, extra=extra)

    def _loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> None:
        exc = context.get("exception")
        message = context.get("message") or "Unhandled exception in event loop"
        if exc is not None:
            details = {"errorName": type(exc).__name__, "message": message}
            reason = str(exc) or type(exc).__name__
        else:
            details = {"errorName": "Unknown", "message": message}
            reason = message
        self.intercept_error(GLOBAL_CALL_SITE, reason, details)
