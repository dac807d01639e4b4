"""High-level instrumentation helpers for MCP servers."""

from __future__ import annotations

from typing import Any, Mapping, Optional, Union

from .config import TraceSettings, create_sink_from_env
from .core.builder import IdentifyUser, RedactFunction
from .core.middleware import TraceMiddleware
from .core.record import LogFields
from .core.scheduler import Scheduler
from .utils.log import configure_logging


def instrument(
    sink: Any = None,
    *,
    log_fields: Union[LogFields, Mapping[str, bool], None] = None,
    redact: Optional[RedactFunction] = None,
    identify_user: Optional[IdentifyUser] = None,
    server_name: Optional[str] = None,
    server_version: Optional[str] = None,
    settings: Optional[TraceSettings] = None,
    scheduler: Optional[Scheduler] = None,
    configure_logs: bool = False,
) -> TraceMiddleware:
    """Create a ready-to-use tracing middleware for an MCP server.

    Without an explicit ``sink`` the sinks named in ``MCP_TRACE_SINKS`` are
    built from the environment.
    """
    settings = settings or TraceSettings.from_env()
    if configure_logs:
        configure_logging(settings.log_level, json_logs=settings.log_json)
    return TraceMiddleware(
        sink if sink is not None else create_sink_from_env(),
        log_fields=log_fields,
        redact=redact,
        identify_user=identify_user,
        server_name=server_name,
        server_version=server_version,
        eviction_timeout=settings.eviction_timeout,
        export_orphans=settings.export_orphans,
        bypass_header=settings.bypass_header,
        scheduler=scheduler,
    )


instrument_mcp_server = instrument
