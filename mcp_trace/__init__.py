"""mcp-trace package.

Message-level tracing for Model Context Protocol (MCP) servers: requests are
correlated with their responses, normalized into trace records, and exported
to any number of sinks.
"""

from .config import TraceSettings, create_sink_from_env
from .core.middleware import TraceMiddleware
from .core.record import LogFields, RecordKind, TraceRecord, User
from .exceptions import DeliveryError, TraceConfigurationError, TraceError
from .instrument import instrument, instrument_mcp_server
from .sinks import BufferedSink, ConsoleSink, MultiSink, Sink

__all__ = [
    "instrument",
    "instrument_mcp_server",
    "TraceMiddleware",
    "TraceRecord",
    "RecordKind",
    "LogFields",
    "User",
    "TraceSettings",
    "create_sink_from_env",
    "Sink",
    "BufferedSink",
    "ConsoleSink",
    "MultiSink",
    "TraceError",
    "TraceConfigurationError",
    "DeliveryError",
]
