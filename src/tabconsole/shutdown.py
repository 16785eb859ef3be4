"""Process-wide shutdown coordination.

Termination signals, uncaught exceptions and unhandled asyncio errors
all funnel into ``ShutdownCoordinator.trigger``. The first trigger kills
every shell, clears the registry and starts closing the listener; every
later trigger is a no-op. If the listener has not closed within the
grace period the process exits with status 1.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
import threading
from types import TracebackType
from typing import Any, Callable

from tabconsole.domain.models import ShutdownPhase
from tabconsole.session.manager import LifecycleManager
from tabconsole.session.registry import SessionRegistry

logger = logging.getLogger(__name__)

DEFAULT_GRACE_PERIOD = 5.0


class ShutdownCoordinator:
    """Drains all shells exactly once and supervises listener close."""

    def __init__(
        self,
        manager: LifecycleManager,
        registry: SessionRegistry,
        *,
        grace_period: float = DEFAULT_GRACE_PERIOD,
        exit_func: Callable[[int], Any] = os._exit,
    ) -> None:
        self._manager = manager
        self._registry = registry
        self._grace_period = grace_period
        self._exit_func = exit_func
        self._lock = threading.Lock()
        self._phase = ShutdownPhase.RUNNING
        self._close_listener: Callable[[], None] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._prev_excepthook: Callable[..., Any] | None = None
        self._prev_thread_excepthook: Callable[..., Any] | None = None
        self.reason: str | None = None
        self.exit_code: int | None = None

    @property
    def phase(self) -> ShutdownPhase:
        return self._phase

    @property
    def is_shutting_down(self) -> bool:
        return self._phase is ShutdownPhase.SHUTTING_DOWN

    def attach_listener(self, close: Callable[[], None]) -> None:
        """Register the callback that starts closing the network listener."""
        self._close_listener = close

    def trigger(self, reason: str) -> bool:
        """Start the shutdown sequence.

        Returns True for the call that actually ran the sequence and False
        for every call after it. Safe to call from any thread.
        """
        with self._lock:
            if self._phase is ShutdownPhase.SHUTTING_DOWN:
                logger.debug("Shutdown already in progress, ignoring %s", reason)
                return False
            self._phase = ShutdownPhase.SHUTTING_DOWN
            self.reason = reason

        loop = self._loop
        if loop is not None and loop.is_running() and not _on_loop_thread(loop):
            loop.call_soon_threadsafe(self._run)
        else:
            self._run()
        return True

    def trigger_threadsafe(self, reason: str) -> None:
        """Schedule ``trigger`` on the event loop (for signal handlers)."""
        loop = self._loop
        if loop is not None and loop.is_running():
            loop.call_soon_threadsafe(self.trigger, reason)
        else:
            self.trigger(reason)

    def listener_closed(self, error: BaseException | None = None) -> int:
        """Record how the listener closed and return the exit status."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if error is not None:
            logger.error("Error closing server: %s", error)
            self.exit_code = 1
        elif self.exit_code is None:
            logger.info("Server closed")
            self.exit_code = 0
        return self.exit_code

    # -------------------------------------------------------------------
    # Hooks for process-wide faults
    # -------------------------------------------------------------------

    def install(self, loop: asyncio.AbstractEventLoop) -> None:
        """Route unhandled errors on ``loop`` and in threads to ``trigger``."""
        self._loop = loop
        loop.set_exception_handler(self._handle_loop_exception)
        self._prev_excepthook = sys.excepthook
        sys.excepthook = self._handle_uncaught
        self._prev_thread_excepthook = threading.excepthook
        threading.excepthook = self._handle_thread_exception

    def uninstall(self) -> None:
        if self._loop is not None:
            self._loop.set_exception_handler(None)
        if self._prev_excepthook is not None:
            sys.excepthook = self._prev_excepthook
            self._prev_excepthook = None
        if self._prev_thread_excepthook is not None:
            threading.excepthook = self._prev_thread_excepthook
            self._prev_thread_excepthook = None

    def _handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]
    ) -> None:
        loop.default_exception_handler(context)
        if context.get("exception") is not None:
            self.trigger("unhandled async error")

    def _handle_uncaught(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))
        self.trigger("uncaught exception")

    def _handle_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        logger.critical(
            "Uncaught exception in thread %s",
            args.thread.name if args.thread else "?",
            exc_info=(args.exc_type, args.exc_value, args.exc_traceback),  # type: ignore[arg-type]
        )
        self.trigger("uncaught exception")

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------

    def _run(self) -> None:
        logger.warning("Shutting down server... (%s)", self.reason)
        killed = self._manager.kill_all()
        self._registry.clear()
        logger.info("Terminated %d terminal process(es)", killed)

        if self._close_listener is None:
            return
        self._close_listener()
        self._arm_grace_timer()

    def _arm_grace_timer(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = self._loop
        if loop is None or loop.is_closed():
            return
        self._timer = loop.call_later(self._grace_period, self._force_exit)

    def _force_exit(self) -> None:
        self._timer = None
        logger.warning("Force exit after %.1fs timeout", self._grace_period)
        self.exit_code = 1
        self._exit_func(1)


def _on_loop_thread(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
