"""Exception types raised by mcp-trace."""

from __future__ import annotations

from typing import Optional


class TraceError(Exception):
    """Base class for tracing pipeline errors."""


class TraceConfigurationError(TraceError, ValueError):
    """Raised at construction time when a component is misconfigured."""


class DeliveryError(TraceError):
    """Raised by sink delivery code when a backend rejects a write."""

    def __init__(self, message: str, *, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
