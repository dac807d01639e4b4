"""Sink contract shared by every export destination."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Optional, Protocol, Union, runtime_checkable

from ..core.record import TraceRecord
from ..exceptions import TraceConfigurationError


@runtime_checkable
class SupportsExport(Protocol):
    def export(self, record: TraceRecord) -> Union[None, Awaitable[None]]:
        ...


@runtime_checkable
class Flushable(Protocol):
    """Sink that can drain buffered state on demand."""

    async def flush(self, timeout: Optional[float] = None) -> None:
        ...


@runtime_checkable
class Shutdownable(Protocol):
    """Sink holding resources (connections, timers) that must be released."""

    async def shutdown(self) -> None:
        ...


class Sink(ABC):
    """Abstract base class for trace sinks.

    ``export`` may be a plain method or a coroutine function. ``flush`` and
    ``shutdown`` default to no-ops; sinks with buffers or connections override
    them.
    """

    @abstractmethod
    def export(self, record: TraceRecord) -> Union[None, Awaitable[None]]:
        """Accept one trace record."""

    async def flush(self, timeout: Optional[float] = None) -> None:
        """Drain buffered records within ``timeout`` seconds, best-effort."""

    async def shutdown(self) -> None:
        """Release sink resources."""


def supports_flush(sink: Any) -> bool:
    return isinstance(sink, Flushable) and callable(getattr(sink, "flush", None))


def supports_shutdown(sink: Any) -> bool:
    return isinstance(sink, Shutdownable) and callable(getattr(sink, "shutdown", None))


def validate_sink(sink: Any) -> None:
    """Raise if ``sink`` cannot be used as a trace sink."""
    if sink is None:
        raise TraceConfigurationError("A trace sink is required")
    if not callable(getattr(sink, "export", None)):
        raise TraceConfigurationError(f"Trace sink {type(sink).__name__} must implement export()")
