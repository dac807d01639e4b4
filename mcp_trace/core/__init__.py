"""Core interception, correlation and record-building modules for mcp-trace."""

from .builder import BuilderConfig, RecordBuilder
from .correlator import PendingCorrelation, RequestCorrelator
from .interceptor import TracedTransport, attach
from .messages import MessageExtra, parse_message
from .middleware import TraceMiddleware
from .record import LogFields, RecordKind, TraceRecord, User
from .scheduler import AsyncioScheduler, Scheduler, VirtualScheduler

__all__ = [
    "TraceRecord",
    "RecordKind",
    "LogFields",
    "User",
    "MessageExtra",
    "parse_message",
    "RecordBuilder",
    "BuilderConfig",
    "RequestCorrelator",
    "PendingCorrelation",
    "TracedTransport",
    "attach",
    "TraceMiddleware",
    "Scheduler",
    "AsyncioScheduler",
    "VirtualScheduler",
]
