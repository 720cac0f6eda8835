"""Cancellable timers and intervals used by the popup controller."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)


class ScheduledTask(Protocol):
    """Handle to a pending timer or interval."""

    @property
    def cancelled(self) -> bool:
        ...

    def cancel(self) -> None:
        ...


class Scheduler(Protocol):
    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        ...

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledTask:
        ...


class _TimerTask:
    def __init__(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        self._handle.cancel()


class _IntervalTask:
    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        self._task: Optional[asyncio.Task[None]] = asyncio.get_running_loop().create_task(
            self._run()
        )

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _run(self) -> None:
        while not self._cancelled:
            await asyncio.sleep(self._interval)
            if self._cancelled:
                return
            try:
                self._callback()
            except Exception:  # pylint: disable=broad-except
                logger.exception("Interval callback failed; will run again")


class AsyncioScheduler:
    """Scheduler bound to the running asyncio event loop."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> ScheduledTask:
        loop = asyncio.get_running_loop()
        return _TimerTask(loop.call_later(delay, callback))

    def call_every(self, interval: float, callback: Callable[[], None]) -> ScheduledTask:
        return _IntervalTask(interval, callback)


__all__ = ["AsyncioScheduler", "ScheduledTask", "Scheduler"]
