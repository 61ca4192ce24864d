"""Deferred execution for coalesced notifications.

The manager never touches timers directly: it asks a Scheduler for a
cancellable callback so tests can substitute a manual clock.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol

logger = logging.getLogger(__name__)


class CancelHandle(Protocol):
    def cancel(self) -> Any:
        ...


class Scheduler(Protocol):
    """Protocol for timer sources."""

    def schedule(self, delay_ms: int, fn: Callable[[], None]) -> CancelHandle:
        """Run ``fn`` after ``delay_ms`` milliseconds.

        Returns:
            A handle whose ``cancel()`` prevents the call
        """
        ...


class _ImmediateHandle:
    def cancel(self) -> None:
        pass


class AsyncioScheduler:
    """Scheduler backed by the running asyncio event loop.

    Outside a running loop there is nothing to wait on, so the callable runs
    immediately.
    """

    def schedule(self, delay_ms: int, fn: Callable[[], None]) -> CancelHandle:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            fn()
            return _ImmediateHandle()
        return loop.call_later(delay_ms / 1000, fn)


class Debouncer:
    """Coalesces calls to ``fn`` within a delay window.

    Each ``run`` restarts the window; only the arguments of the last call
    inside a window reach ``fn``.

    Example:
        debouncer = Debouncer(notify, 100, AsyncioScheduler())
        debouncer.run(state)
        debouncer.run(state)  # only this call fires, 100ms from now
    """

    def __init__(self, fn: Callable[..., None], delay_ms: int, scheduler: Scheduler):
        if delay_ms < 0:
            raise ValueError("delay_ms must not be negative")
        self.fn = fn
        self.delay_ms = delay_ms
        self.scheduler = scheduler
        self._handle: CancelHandle | None = None
        self._disposed = False

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def run(self, *args: Any) -> None:
        """Schedule ``fn(*args)``, replacing any call still waiting."""
        if self._disposed:
            return
        self.cancel()

        fired = False

        def fire() -> None:
            nonlocal fired
            fired = True
            self._handle = None
            self.fn(*args)

        handle = self.scheduler.schedule(self.delay_ms, fire)
        if not fired:
            self._handle = handle

    def force_run(self, *args: Any) -> None:
        """Cancel any waiting call and run ``fn(*args)`` now."""
        if self._disposed:
            return
        self.cancel()
        self.fn(*args)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def dispose(self) -> None:
        """Cancel any waiting call and ignore all future calls."""
        self.cancel()
        self._disposed = True
        logger.debug("Debouncer disposed")
