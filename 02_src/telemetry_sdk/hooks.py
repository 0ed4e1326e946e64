"""Process-wide crash hooks.

Uncaught exceptions (main thread and worker threads) and exceptions nobody
retrieved from asyncio tasks are reported before the previous handler runs.
"""

import asyncio
import sys
import threading
from collections.abc import Callable
from typing import Any

from .logging_config import get_logger

logger = get_logger(__name__)


class CrashHandlers:
    """Chains onto sys/threading excepthooks and the loop exception handler."""

    def __init__(self, on_error: Callable[[BaseException], None]):
        self._on_error = on_error
        self._installed = False
        self._prev_excepthook: Callable[..., Any] | None = None
        self._prev_threading_excepthook: Callable[..., Any] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._prev_loop_handler: Callable[..., Any] | None = None

    @property
    def installed(self) -> bool:
        return self._installed

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Install once; later calls are no-ops until uninstall()."""
        if self._installed:
            return

        self._prev_excepthook = sys.excepthook
        sys.excepthook = self._excepthook

        self._prev_threading_excepthook = threading.excepthook
        threading.excepthook = self._threading_excepthook

        if loop is not None:
            self._loop = loop
            self._prev_loop_handler = loop.get_exception_handler()
            loop.set_exception_handler(self._loop_exception_handler)

        self._installed = True

    def uninstall(self) -> None:
        """Restore previous handlers, unless someone replaced ours meanwhile."""
        if not self._installed:
            return

        if sys.excepthook == self._excepthook:
            sys.excepthook = self._prev_excepthook
        if threading.excepthook == self._threading_excepthook:
            threading.excepthook = self._prev_threading_excepthook
        if self._loop is not None and not self._loop.is_closed():
            if self._loop.get_exception_handler() == self._loop_exception_handler:
                self._loop.set_exception_handler(self._prev_loop_handler)

        self._loop = None
        self._installed = False

    def _capture(self, error: BaseException) -> None:
        try:
            self._on_error(error)
        except Exception:
            logger.error("Error capturing uncaught exception", exc_info=True)

    def _excepthook(self, exc_type, exc_value, exc_tb) -> None:
        if exc_value is not None and not issubclass(exc_type, KeyboardInterrupt):
            self._capture(exc_value)
        if self._prev_excepthook is not None:
            self._prev_excepthook(exc_type, exc_value, exc_tb)

    def _threading_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_value is not None and not issubclass(args.exc_type, SystemExit):
            self._capture(args.exc_value)
        if self._prev_threading_excepthook is not None:
            self._prev_threading_excepthook(args)

    def _loop_exception_handler(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        error = context.get("exception")
        if isinstance(error, BaseException) and not isinstance(error, asyncio.CancelledError):
            self._capture(error)
        if self._prev_loop_handler is not None:
            self._prev_loop_handler(loop, context)
        else:
            loop.default_exception_handler(context)
