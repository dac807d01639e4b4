"""Queue-backed sink base for slow or batched destinations."""

from __future__ import annotations

import asyncio
from abc import abstractmethod
from collections import deque
from typing import Deque, List, Optional

import structlog

from ..core.record import TraceRecord
from ..core.scheduler import AsyncioScheduler, Scheduler, TimerHandle
from .base import Sink

logger = structlog.get_logger(__name__)


class BufferedSink(Sink):
    """Decouples trace production from destination latency.

    Records are queued by :meth:`export` (dropping the newest record when the
    queue is full) and drained in batches of up to ``batch_size`` every
    ``flush_interval`` seconds, or as soon as ``batch_size`` records are
    waiting. Each batch is handed to :meth:`deliver`; a failing batch is
    retried up to ``max_attempts`` times, waiting
    ``retry_delay * backoff_factor ** (attempt - 1)`` seconds between tries,
    and then dropped with a warning.
    """

    def __init__(
        self,
        *,
        capacity: int = 1000,
        batch_size: int = 100,
        flush_interval: float = 1.0,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        backoff_factor: float = 1.0,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.capacity = capacity
        self.batch_size = batch_size
        self.flush_interval = flush_interval
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self.scheduler = scheduler or AsyncioScheduler()

        self._queue: Deque[TraceRecord] = deque()
        self._timer: Optional[TimerHandle] = None
        self._lock: Optional[asyncio.Lock] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._stopped = False
        self.dropped = 0

    @abstractmethod
    async def deliver(self, records: List[TraceRecord]) -> None:
        """Write one batch to the destination; raise on failure."""

    @property
    def queued(self) -> int:
        return len(self._queue)

    def export(self, record: TraceRecord) -> None:
        if self._stopped:
            logger.warning("buffered_sink_stopped_record_dropped", sink=type(self).__name__, method=record.method)
            self.dropped += 1
            return
        if len(self._queue) >= self.capacity:
            logger.warning(
                "buffer_full_record_dropped",
                sink=type(self).__name__,
                capacity=self.capacity,
                method=record.method,
            )
            self.dropped += 1
            return
        self._queue.append(record)
        if len(self._queue) >= self.batch_size:
            self._schedule_drain()
        self._ensure_timer()

    async def flush(self, timeout: Optional[float] = None) -> None:
        """Drain the queue until empty or until ``timeout`` seconds elapse.

        The timeout also bounds the wait for a background drain that is
        currently delivering or backing off between retries.
        """
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        lock = self._get_lock()
        if deadline is not None and lock.locked():
            try:
                await asyncio.wait_for(lock.acquire(), timeout=max(0.0, deadline - loop.time()))
            except asyncio.TimeoutError:
                logger.warning("flush_timeout_reached", sink=type(self).__name__, remaining_records=len(self._queue))
                return
        else:
            await lock.acquire()
        try:
            await self._flush_locked(loop, deadline)
        finally:
            lock.release()

    async def _flush_locked(self, loop: asyncio.AbstractEventLoop, deadline: Optional[float]) -> None:
        while self._queue:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                logger.warning("flush_timeout_reached", sink=type(self).__name__, remaining_records=len(self._queue))
                return
            batch = self._take_batch()
            if remaining is None:
                await self._deliver_with_retry(batch)
                continue
            try:
                await asyncio.wait_for(self._deliver_with_retry(batch), timeout=remaining)
            except asyncio.TimeoutError:
                self.dropped += len(batch)
                logger.warning(
                    "flush_timeout_reached",
                    sink=type(self).__name__,
                    remaining_records=len(self._queue),
                    abandoned_batch=len(batch),
                )
                return

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop the drain timer and perform a final flush bounded by ``timeout``."""
        self._stopped = True
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        try:
            drain = self._drain_task
            if drain is not None and not drain.done():
                await asyncio.wait({drain}, timeout=timeout)
                if not drain.done():
                    logger.warning("drain_cancelled_on_shutdown", sink=type(self).__name__, remaining_records=len(self._queue))
                    drain.cancel()
                    await asyncio.wait({drain})
            remaining = None if deadline is None else max(0.0, deadline - loop.time())
            await self.flush(remaining)
        finally:
            if self._drain_task is not None and not self._drain_task.done():
                self._drain_task.cancel()
            await self.close()

    async def close(self) -> None:
        """Release destination resources; called once after the final flush."""

    def _take_batch(self) -> List[TraceRecord]:
        batch = []
        while self._queue and len(batch) < self.batch_size:
            batch.append(self._queue.popleft())
        return batch

    async def _drain(self) -> None:
        async with self._get_lock():
            while self._queue:
                batch = self._take_batch()
                try:
                    await self._deliver_with_retry(batch)
                except asyncio.CancelledError:
                    self.dropped += len(batch)
                    raise

    async def _deliver_with_retry(self, batch: List[TraceRecord]) -> None:
        for attempt in range(1, self.max_attempts + 1):
            try:
                await self.deliver(batch)
                return
            except Exception as exc:
                logger.warning(
                    "delivery_attempt_failed",
                    sink=type(self).__name__,
                    attempt=attempt,
                    max_attempts=self.max_attempts,
                    batch_size=len(batch),
                    error=str(exc),
                )
            if attempt < self.max_attempts:
                await self.scheduler.sleep(self.retry_delay * self.backoff_factor ** (attempt - 1))
        self.dropped += len(batch)
        logger.warning("max_retries_exceeded_records_dropped", sink=type(self).__name__, dropped=len(batch))

    def _schedule_drain(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        if self._drain_task is not None and not self._drain_task.done():
            return
        self._drain_task = loop.create_task(self._drain())

    def _ensure_timer(self) -> None:
        if self._timer is not None or self._stopped:
            return
        try:
            self._timer = self.scheduler.call_later(self.flush_interval, self._on_timer)
        except RuntimeError:
            # No running loop yet; the next export or flush drains the queue.
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = None
        if self._stopped:
            return
        if self._queue:
            self._schedule_drain()
            self._ensure_timer()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock
