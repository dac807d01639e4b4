"""Environment-driven configuration for mcp-trace."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, List, Mapping, Optional

from .core.correlator import DEFAULT_EVICTION_TIMEOUT
from .core.middleware import BYPASS_HEADER
from .exceptions import TraceConfigurationError
from .sinks.base import Sink
from .sinks.console import ConsoleSink
from .sinks.multi import MultiSink

_TRUE_VALUES = {"1", "true", "yes", "on"}
# OTEL_EXPORTER_OTLP_PROTOCOL values -> OTLPSink protocol
_OTLP_PROTOCOLS = {"http/protobuf": "http", "http/json": "http", "grpc": "grpc", "http": "http"}


def _env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    value = env.get(name)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    value = env.get(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError as exc:
        raise TraceConfigurationError(f"{name} must be a number, got {value!r}") from exc


@dataclass
class TraceSettings:
    """Process-level tracing options."""

    eviction_timeout: float = DEFAULT_EVICTION_TIMEOUT
    bypass_header: str = BYPASS_HEADER
    export_orphans: bool = False
    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(cls, env: Optional[Mapping[str, str]] = None) -> "TraceSettings":
        env = os.environ if env is None else env
        return cls(
            eviction_timeout=_env_float(env, "MCP_TRACE_EVICTION_TIMEOUT", DEFAULT_EVICTION_TIMEOUT),
            bypass_header=env.get("MCP_TRACE_BYPASS_HEADER") or BYPASS_HEADER,
            export_orphans=_env_bool(env, "MCP_TRACE_EXPORT_ORPHANS"),
            log_level=env.get("MCP_TRACE_LOG_LEVEL") or "INFO",
            log_json=_env_bool(env, "MCP_TRACE_LOG_JSON"),
        )


def _build_sink(name: str, env: Mapping[str, str]) -> Any:
    if name == "console":
        return ConsoleSink(color=not _env_bool(env, "NO_COLOR"))
    if name == "file":
        from .sinks.file import FileSink

        return FileSink(env.get("MCP_TRACE_FILE") or "mcp-traces.jsonl")
    if name == "postgres":
        from .sinks.postgres import PostgresSink

        dsn = env.get("MCP_TRACE_PG_DSN") or env.get("DATABASE_URL")
        if not dsn:
            raise TraceConfigurationError("postgres sink requires MCP_TRACE_PG_DSN or DATABASE_URL")
        return PostgresSink(
            dsn,
            table_name=env.get("MCP_TRACE_PG_TABLE") or "trace_events",
            create_table=_env_bool(env, "MCP_TRACE_PG_CREATE_TABLE"),
        )
    if name == "supabase":
        from .sinks.supabase import SupabaseSink

        return SupabaseSink(
            env.get("SUPABASE_URL"),
            env.get("SUPABASE_KEY"),
            table_name=env.get("MCP_TRACE_SUPABASE_TABLE") or "trace_events",
        )
    if name == "contexa":
        from .sinks.contexa import ContexaSink

        return ContexaSink(
            env.get("CONTEXA_API_KEY"),
            env.get("CONTEXA_SERVER_ID"),
            env.get("CONTEXA_API_URL"),
        )
    if name == "otlp":
        from .sinks.otlp import OTLPSink

        protocol = (env.get("OTEL_EXPORTER_OTLP_TRACES_PROTOCOL") or env.get("OTEL_EXPORTER_OTLP_PROTOCOL") or "http").lower()
        return OTLPSink(
            env.get("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT") or None,
            protocol=_OTLP_PROTOCOLS.get(protocol, protocol),
            service_name=env.get("OTEL_SERVICE_NAME") or "mcp-trace",
        )
    raise TraceConfigurationError(f"Unknown sink {name!r}")


def create_sink_from_env(env: Optional[Mapping[str, str]] = None) -> Sink:
    """Build the sinks listed in ``MCP_TRACE_SINKS``; defaults to a console sink."""
    env = os.environ if env is None else env
    names: List[str] = [item.strip().lower() for item in (env.get("MCP_TRACE_SINKS") or "console").split(",")]
    sinks = [_build_sink(name, env) for name in names if name]
    if len(sinks) == 1:
        return sinks[0]
    return MultiSink(*sinks)
