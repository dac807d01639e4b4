"""Bounded table of in-flight requests awaiting their responses."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Iterator, Optional

import structlog

from .record import RequestId, TraceRecord
from .scheduler import AsyncioScheduler, Scheduler, TimerHandle

logger = structlog.get_logger(__name__)

DEFAULT_EVICTION_TIMEOUT = 5 * 60.0
DEFAULT_MAX_PENDING = 10_000


@dataclass
class PendingCorrelation:
    """A request seen by the pipeline whose response has not been sent yet.

    ``record`` is ``None`` for requests that bypass tracing; they are tracked
    only so their response is skipped as well.
    """

    request_id: RequestId
    start_time: float
    record: Optional[TraceRecord]
    timer: Optional[TimerHandle] = None


EvictionCallback = Callable[[PendingCorrelation], None]


class RequestCorrelator:
    """Tracks pending requests by JSON-RPC id.

    Each entry ends in exactly one of two ways: :meth:`resolve` when the
    response is intercepted, or eviction when its timer fires first. Both paths
    remove the entry and drop its timer together.
    """

    def __init__(
        self,
        *,
        scheduler: Optional[Scheduler] = None,
        timeout: float = DEFAULT_EVICTION_TIMEOUT,
        max_pending: Optional[int] = DEFAULT_MAX_PENDING,
        on_evict: Optional[EvictionCallback] = None,
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        if max_pending is not None and max_pending < 1:
            raise ValueError("max_pending must be at least 1")
        self.scheduler = scheduler or AsyncioScheduler()
        self.timeout = timeout
        self.max_pending = max_pending
        self.on_evict = on_evict
        self._pending: "OrderedDict[RequestId, PendingCorrelation]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: object) -> bool:
        return request_id in self._pending

    def __iter__(self) -> Iterator[PendingCorrelation]:
        return iter(list(self._pending.values()))

    def begin(self, request_id: RequestId, record: Optional[TraceRecord]) -> PendingCorrelation:
        """Start tracking ``request_id``; an existing entry with the same id is replaced."""
        previous = self._pending.pop(request_id, None)
        if previous is not None:
            self._cancel(previous)
            logger.debug("pending_request_overwritten", request_id=request_id)

        if self.max_pending is not None:
            while len(self._pending) >= self.max_pending:
                _, oldest = self._pending.popitem(last=False)
                self._cancel(oldest)
                logger.warning(
                    "pending_table_full_evicting_oldest",
                    request_id=oldest.request_id,
                    max_pending=self.max_pending,
                )
                self._notify_evicted(oldest)

        entry = PendingCorrelation(request_id=request_id, start_time=self.scheduler.now(), record=record)
        self._pending[request_id] = entry
        entry.timer = self.scheduler.call_later(self.timeout, lambda: self._expire(entry))
        return entry

    def ignore(self, request_id: RequestId) -> PendingCorrelation:
        """Track a bypassed request so its response is not traced either."""
        return self.begin(request_id, None)

    def resolve(self, request_id: RequestId) -> Optional[PendingCorrelation]:
        """Remove and return the pending entry for ``request_id``, if any."""
        entry = self._pending.pop(request_id, None)
        if entry is not None:
            self._cancel(entry)
        return entry

    def elapsed_ms(self, entry: PendingCorrelation) -> int:
        return max(0, int(round(self.scheduler.now() - entry.start_time)))

    def clear(self) -> None:
        """Drop every pending entry and cancel its timer without evicting."""
        for entry in self._pending.values():
            self._cancel(entry)
        self._pending.clear()

    def _expire(self, entry: PendingCorrelation) -> None:
        # The id may have been resolved or re-used since this timer was armed.
        if self._pending.get(entry.request_id) is not entry:
            return
        del self._pending[entry.request_id]
        entry.timer = None
        logger.debug("pending_request_evicted", request_id=entry.request_id, timeout=self.timeout)
        self._notify_evicted(entry)

    def _notify_evicted(self, entry: PendingCorrelation) -> None:
        if self.on_evict is None or entry.record is None:
            return
        try:
            self.on_evict(entry)
        except Exception as exc:
            logger.error("eviction_callback_failed", request_id=entry.request_id, error=str(exc))

    @staticmethod
    def _cancel(entry: PendingCorrelation) -> None:
        if entry.timer is not None:
            entry.timer.cancel()
            entry.timer = None
