"""OpenTelemetry sink projecting each trace record onto one span."""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple

import structlog
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import SpanKind, Status, StatusCode

from ..core.record import TraceRecord
from ..exceptions import TraceConfigurationError
from ..utils.time import parse_iso, to_epoch_ns
from .base import Sink

logger = structlog.get_logger(__name__)

DEFAULT_SPAN_NAME = "mcp-operation"
DEFAULT_ENDPOINTS = {
    "http": "http://localhost:4318/v1/traces",
    "grpc": "http://localhost:4317",
}
ATTRIBUTE_PREFIX = "mcp."

# record attribute -> span attribute key
_ATTRIBUTE_KEYS: Tuple[Tuple[str, str], ...] = (
    ("method", "mcp.method"),
    ("request_id", "mcp.request_id"),
    ("entity_name", "mcp.entity_name"),
    ("client_id", "mcp.client_id"),
    ("client_name", "mcp.client_name"),
    ("client_version", "mcp.client_version"),
    ("server_name", "mcp.server_name"),
    ("server_version", "mcp.server_version"),
    ("duration_ms", "mcp.duration_ms"),
    ("ip_address", "mcp.ip_address"),
    ("is_error", "mcp.is_error"),
    ("error", "mcp.error"),
    ("user_id", "mcp.user_id"),
    ("user_name", "mcp.user_name"),
    ("user_email", "mcp.user_email"),
    ("sdk_language", "mcp.sdk_language"),
    ("sdk_version", "mcp.sdk_version"),
)


@dataclass
class SpanProjection:
    """Backend-neutral description of the span a record maps to."""

    name: str
    attributes: Dict[str, Any]
    start_time_ns: int
    end_time_ns: int
    events: List[Tuple[str, Dict[str, Any], int]] = field(default_factory=list)
    error: Optional[str] = None


def span_name(record: TraceRecord) -> str:
    parts = [record.kind.value if record.kind else None, record.method, record.entity_name]
    present = [part for part in parts if part]
    return " ".join(present) if present else DEFAULT_SPAN_NAME


def _attribute_value(value: Any) -> Any:
    if isinstance(value, (str, bool, int, float)):
        return value
    return json.dumps(value, default=str)


def span_attributes(record: TraceRecord) -> Dict[str, Any]:
    """Flatten every populated record field into ``mcp.*`` attributes."""
    attributes: Dict[str, Any] = {}
    if record.kind:
        attributes["mcp.type"] = record.kind.value
    if record.session_id:
        attributes["mcp.session_id"] = record.session_id
    for name, key in _ATTRIBUTE_KEYS:
        value = getattr(record, name)
        if value is None or value == "":
            continue
        attributes[key] = _attribute_value(value)
    for key, value in (record.metadata or {}).items():
        if value is not None:
            attributes[f"{ATTRIBUTE_PREFIX}metadata.{key}"] = _attribute_value(value)
    return attributes


def project_record(record: TraceRecord, *, now_ns: Optional[int] = None) -> SpanProjection:
    """Map a record onto span name, attributes, events, timing and status."""
    now_ns = time.time_ns() if now_ns is None else now_ns
    start_ns = to_epoch_ns(parse_iso(record.timestamp)) if record.timestamp else now_ns
    if record.duration_ms is not None:
        end_ns = start_ns + record.duration_ms * 1_000_000
    else:
        end_ns = max(now_ns, start_ns)

    events: List[Tuple[str, Dict[str, Any], int]] = []
    if record.request is not None:
        events.append(("request", {"mcp.request": json.dumps(record.request, default=str)}, start_ns))
    if record.response is not None:
        events.append(("response", {"mcp.response": json.dumps(record.response, default=str)}, end_ns))

    error = record.error or ("error" if record.is_error else None)
    return SpanProjection(
        name=span_name(record),
        attributes=span_attributes(record),
        start_time_ns=start_ns,
        end_time_ns=end_ns,
        events=events,
        error=error,
    )


class OTLPSink(Sink):
    """Exports records as spans through an OpenTelemetry ``TracerProvider``.

    Without an injected ``tracer_provider`` a private provider is built on
    first export with a ``BatchSpanProcessor`` feeding the OTLP exporter for
    ``protocol`` (``"http"`` for OTLP/HTTP protobuf, ``"grpc"`` for OTLP/gRPC).
    """

    def __init__(
        self,
        endpoint: Optional[str] = None,
        *,
        protocol: str = "http",
        service_name: str = "mcp-trace",
        service_version: str = "1.0.0",
        headers: Optional[Mapping[str, str]] = None,
        max_export_batch_size: int = 512,
        export_timeout_millis: int = 30_000,
        schedule_delay_millis: int = 5_000,
        tracer_provider: Optional[TracerProvider] = None,
    ) -> None:
        if protocol not in DEFAULT_ENDPOINTS:
            raise TraceConfigurationError(f"unsupported OTLP protocol: {protocol!r} (expected \"http\" or \"grpc\")")
        self.protocol = protocol
        self.endpoint = endpoint or DEFAULT_ENDPOINTS[protocol]
        self.service_name = service_name
        self.service_version = service_version
        self.headers = dict(headers or {})
        self.max_export_batch_size = max_export_batch_size
        self.export_timeout_millis = export_timeout_millis
        self.schedule_delay_millis = schedule_delay_millis
        self._provider = tracer_provider
        self._owns_provider = tracer_provider is None
        self._tracer: Any = None

    def _create_exporter(self) -> Any:
        if self.protocol == "grpc":
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
        else:
            from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
        return OTLPSpanExporter(endpoint=self.endpoint, headers=self.headers)

    def _build_provider(self) -> TracerProvider:
        provider = TracerProvider(
            resource=Resource.create({SERVICE_NAME: self.service_name, SERVICE_VERSION: self.service_version})
        )
        exporter = self._create_exporter()
        provider.add_span_processor(
            BatchSpanProcessor(
                exporter,
                max_export_batch_size=self.max_export_batch_size,
                export_timeout_millis=self.export_timeout_millis,
                schedule_delay_millis=self.schedule_delay_millis,
            )
        )
        return provider

    def _get_tracer(self) -> Any:
        if self._tracer is None:
            if self._provider is None:
                self._provider = self._build_provider()
            self._tracer = self._provider.get_tracer(self.service_name, self.service_version)
        return self._tracer

    def export(self, record: TraceRecord) -> None:
        projection = project_record(record)
        span = self._get_tracer().start_span(
            projection.name,
            kind=SpanKind.SERVER,
            attributes=projection.attributes,
            start_time=projection.start_time_ns,
        )
        for name, attributes, timestamp in projection.events:
            span.add_event(name, attributes=attributes, timestamp=timestamp)
        if projection.error is not None:
            span.record_exception(Exception(projection.error), timestamp=projection.end_time_ns)
            span.set_status(Status(StatusCode.ERROR, projection.error))
        else:
            span.set_status(Status(StatusCode.OK))
        span.end(end_time=projection.end_time_ns)

    async def flush(self, timeout: Optional[float] = None) -> None:
        if self._provider is None:
            return
        timeout_millis = int(timeout * 1000) if timeout is not None else self.export_timeout_millis
        flushed = await asyncio.to_thread(self._provider.force_flush, timeout_millis)
        if not flushed:
            logger.warning("otlp_flush_incomplete", timeout_millis=timeout_millis)

    async def shutdown(self) -> None:
        if self._provider is None:
            return
        if self._owns_provider:
            await asyncio.to_thread(self._provider.shutdown)
            self._provider = None
        else:
            await self.flush()
        self._tracer = None
