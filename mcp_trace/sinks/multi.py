"""Fan-out sink dispatching every call to several sinks with isolated failures."""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, List, Optional, Sequence

import structlog

from ..core.record import TraceRecord
from .base import Sink, supports_flush, supports_shutdown, validate_sink

logger = structlog.get_logger(__name__)


class MultiSink(Sink):
    """Broadcasts export, flush and shutdown to an ordered set of sinks.

    A sink that raises, rejects, or returns an error never affects its
    siblings or the caller; the failure is logged with the sink's 1-based
    position.
    """

    def __init__(self, *sinks: Any) -> None:
        for sink in sinks:
            validate_sink(sink)
        self._sinks: List[Any] = list(sinks)

    @property
    def sinks(self) -> Sequence[Any]:
        return tuple(self._sinks)

    async def export(self, record: TraceRecord) -> None:
        await self._broadcast("export", lambda sink: sink.export(record), record=record)

    async def flush(self, timeout: Optional[float] = None) -> None:
        targets = [(index, sink) for index, sink in enumerate(self._sinks) if supports_flush(sink)]
        await self._broadcast("flush", lambda sink: sink.flush(timeout), targets=targets)

    async def shutdown(self) -> None:
        targets = [(index, sink) for index, sink in enumerate(self._sinks) if supports_shutdown(sink)]
        await self._broadcast("shutdown", lambda sink: sink.shutdown(), targets=targets)

    async def _broadcast(
        self,
        operation: str,
        call: Callable[[Any], Any],
        *,
        targets: Optional[List[tuple]] = None,
        record: Optional[TraceRecord] = None,
    ) -> None:
        if targets is None:
            targets = list(enumerate(self._sinks))
        await asyncio.gather(*(self._guarded(operation, index, sink, call, record) for index, sink in targets))

    async def _guarded(
        self,
        operation: str,
        index: int,
        sink: Any,
        call: Callable[[Any], Any],
        record: Optional[TraceRecord],
    ) -> None:
        try:
            result = call(sink)
            if inspect.isawaitable(result):
                await result
        except Exception as exc:
            logger.error(
                f"sink_{operation}_failed",
                sink_index=index + 1,
                sink_type=type(sink).__name__,
                method=record.method if record is not None else None,
                error=str(exc),
            )
