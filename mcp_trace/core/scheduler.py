"""Injectable timer abstraction used for eviction and buffered draining.

Components never touch the event loop clock directly; they ask a
:class:`Scheduler` for the time and for cancellable timers so tests can drive
virtual time with :class:`VirtualScheduler`.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional, Protocol, Tuple


class TimerHandle(Protocol):
    """Cancellable reference to a scheduled callback."""

    def cancel(self) -> None:
        ...


class Scheduler(ABC):
    """Clock plus one-shot timers."""

    @abstractmethod
    def now(self) -> float:
        """Monotonic time in milliseconds."""

    @abstractmethod
    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""

    @abstractmethod
    async def sleep(self, delay: float) -> None:
        """Suspend the calling task for ``delay`` seconds."""


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def now(self) -> float:
        return time.monotonic() * 1000.0

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(delay, callback)

    async def sleep(self, delay: float) -> None:
        await asyncio.sleep(delay)


class _VirtualTimer:
    def __init__(self, scheduler: "VirtualScheduler") -> None:
        self._scheduler = scheduler
        self.cancelled = False

    def cancel(self) -> None:
        if not self.cancelled:
            self.cancelled = True
            self._scheduler._cancelled += 1


class VirtualScheduler(Scheduler):
    """Deterministic scheduler whose clock only moves when told to."""

    def __init__(self, start: float = 0.0) -> None:
        self._now_ms = start
        self._counter = itertools.count()
        self._queue: List[Tuple[float, int, _VirtualTimer, Callable[[], None]]] = []
        self._cancelled = 0

    def now(self) -> float:
        return self._now_ms

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        timer = _VirtualTimer(self)
        heapq.heappush(self._queue, (self._now_ms + delay * 1000.0, next(self._counter), timer, callback))
        return timer

    async def sleep(self, delay: float) -> None:
        self.advance(delay)
        await asyncio.sleep(0)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing due callbacks in deadline order."""
        target = self._now_ms + seconds * 1000.0
        while self._queue and self._queue[0][0] <= target:
            deadline, _, timer, callback = heapq.heappop(self._queue)
            if timer.cancelled:
                self._cancelled -= 1
                continue
            self._now_ms = max(self._now_ms, deadline)
            timer.cancelled = True
            callback()
        self._now_ms = max(self._now_ms, target)

    @property
    def pending_timers(self) -> int:
        """Number of scheduled, not yet cancelled or fired, callbacks."""
        return len(self._queue) - self._cancelled

    def next_deadline(self) -> Optional[float]:
        live = [entry[0] for entry in self._queue if not entry[2].cancelled]
        return min(live) if live else None
