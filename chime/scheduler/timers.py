"""
Timers: one-shot delayed callbacks.

The scheduler never touches the event loop's timer API directly; it arms
callbacks through a Timer, which keeps it testable with a fake clock and
makes "which timers are live" an explicit handle rather than a loop detail.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

Callback = Callable[[], Awaitable[None]]


class TimerHandle(ABC):
    """A single armed timer."""

    @abstractmethod
    def cancel(self) -> None:
        """Disarm. No-op once fired or already cancelled."""
        ...

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        ...

    @property
    @abstractmethod
    def fired(self) -> bool:
        ...


class Timer(ABC):
    """Arms one-shot async callbacks."""

    @abstractmethod
    def arm(self, delay: float, callback: Callback) -> TimerHandle:
        """Run callback after delay seconds (0 or less means as soon as possible)."""
        ...

    async def shutdown(self) -> None:
        """Cancel callbacks that are still executing."""
        pass


class _AsyncioHandle(TimerHandle):

    def __init__(self) -> None:
        self._loop_handle: asyncio.TimerHandle | None = None
        self._cancelled = False
        self._fired = False

    def cancel(self) -> None:
        if self._fired or self._cancelled:
            return
        self._cancelled = True
        if self._loop_handle is not None:
            self._loop_handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def fired(self) -> bool:
        return self._fired


class AsyncioTimer(Timer):
    """
    Timer on top of loop.call_later.

    Each fired callback runs as its own task, so a slow delivery never
    delays other timers. Running tasks are tracked for shutdown().
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def arm(self, delay: float, callback: Callback) -> TimerHandle:
        loop = asyncio.get_running_loop()
        handle = _AsyncioHandle()

        def _fire() -> None:
            handle._fired = True
            task = loop.create_task(callback())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        handle._loop_handle = loop.call_later(max(delay, 0.0), _fire)
        return handle

    @property
    def running(self) -> int:
        """Number of callbacks currently executing."""
        return len(self._tasks)

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.debug(f"Cancelled {len(tasks)} in-flight timer callback(s)")
