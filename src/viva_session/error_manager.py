"""User-facing error banner state.

The request pipeline reports connectivity and authentication problems here;
the UI layer reads ``current_errors`` or registers a listener.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from enum import StrEnum

import structlog

logger = structlog.get_logger(__name__)

CONNECTIVITY_CHECK_INTERVAL = 5.0


class ErrorType(StrEnum):
    NETWORK = "network"
    AUTHENTICATION = "authentication"
    GENERAL = "general"


ErrorListener = Callable[[dict[ErrorType, str]], None]


class ErrorManager:
    """Tracks one active message per error type.

    When a network error is registered and a ``ping`` callable is available,
    the server is polled every few seconds and the error is cleared on the
    first successful ping.
    """

    def __init__(
        self,
        ping: Callable[[], Awaitable[object]] | None = None,
        check_interval: float = CONNECTIVITY_CHECK_INTERVAL,
    ) -> None:
        self._errors: dict[ErrorType, str] = {}
        self._listeners: list[ErrorListener] = []
        self._ping = ping
        self._check_interval = check_interval
        self._monitor_task: asyncio.Task[None] | None = None

    @property
    def current_errors(self) -> dict[ErrorType, str]:
        return dict(self._errors)

    @property
    def has_errors(self) -> bool:
        return bool(self._errors)

    def set_ping(self, ping: Callable[[], Awaitable[object]]) -> None:
        self._ping = ping

    def add_listener(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    def register_error(self, message: str, error_type: ErrorType) -> None:
        """Show message for error_type, replacing any previous one."""
        self._errors[error_type] = message
        logger.debug("error_registered", error_type=str(error_type))
        if error_type is ErrorType.NETWORK:
            self._start_connectivity_monitoring()
        self._notify()

    def clear_error(self, error_type: ErrorType) -> None:
        if error_type is ErrorType.NETWORK:
            self._stop_connectivity_monitoring()
        if self._errors.pop(error_type, None) is not None:
            logger.debug("error_cleared", error_type=str(error_type))
            self._notify()

    def clear_all_errors(self) -> None:
        self._stop_connectivity_monitoring()
        if self._errors:
            self._errors.clear()
            self._notify()

    def _notify(self) -> None:
        snapshot = self.current_errors
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("error_listener_failed")

    # Connectivity monitoring

    def _start_connectivity_monitoring(self) -> None:
        ping = self._ping
        if ping is None:
            return
        if self._monitor_task is not None and not self._monitor_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop: nothing can poll, the next successful request clears the error
            return
        self._monitor_task = loop.create_task(self._monitor_connectivity(ping))

    def _stop_connectivity_monitoring(self) -> None:
        task = self._monitor_task
        self._monitor_task = None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    async def _monitor_connectivity(self, ping: Callable[[], Awaitable[object]]) -> None:
        while ErrorType.NETWORK in self._errors:
            await asyncio.sleep(self._check_interval)
            try:
                await ping()
            except Exception as e:
                logger.debug("connectivity_check_failed", error=str(e))
                continue
            logger.info("connectivity_restored")
            self.clear_error(ErrorType.NETWORK)
            return

    async def aclose(self) -> None:
        """Stop background monitoring."""
        task = self._monitor_task
        self._monitor_task = None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task


def _current_task() -> asyncio.Task[object] | None:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
