"""Sink implementations for mcp-trace."""

from .base import Flushable, Shutdownable, Sink
from .buffered import BufferedSink
from .console import ConsoleSink
from .multi import MultiSink

__all__ = [
    "Sink",
    "Flushable",
    "Shutdownable",
    "BufferedSink",
    "ConsoleSink",
    "MultiSink",
    "FileSink",
    "PostgresSink",
    "SupabaseSink",
    "ContexaSink",
    "OTLPSink",
]

_LAZY = {
    "FileSink": ".file",
    "PostgresSink": ".postgres",
    "SupabaseSink": ".supabase",
    "ContexaSink": ".contexa",
    "OTLPSink": ".otlp",
}


def __getattr__(name: str):
    if name in _LAZY:
        from importlib import import_module

        return getattr(import_module(_LAZY[name], __name__), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
