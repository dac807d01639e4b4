import asyncio

import pytest

from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import SpanKind, StatusCode

from mcp_trace.core.record import RecordKind, TraceRecord
from mcp_trace.exceptions import TraceConfigurationError
from mcp_trace.sinks.otlp import OTLPSink, project_record, span_name
from mcp_trace.utils.time import parse_iso, to_epoch_ns

TIMESTAMP = "2025-01-01T00:00:00.000Z"


def _record(**overrides: object) -> TraceRecord:
    values = dict(
        kind=RecordKind.REQUEST,
        timestamp=TIMESTAMP,
        session_id="session-1",
        method="tools/call",
        request_id=1,
        entity_name="add",
        duration_ms=10,
        request={"name": "add"},
        response={"sum": 3},
        metadata={"region": "eu", "tags": ["a", "b"]},
    )
    values.update(overrides)
    return TraceRecord(**values)


def _sink() -> tuple:
    exporter = InMemorySpanExporter()
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(exporter))
    return OTLPSink(tracer_provider=provider), exporter


def test_span_name_joins_kind_method_and_entity() -> None:
    assert span_name(_record()) == "request tools/call add"
    assert span_name(_record(kind=RecordKind.NOTIFICATION, method="notifications/progress", entity_name=None)) == (
        "notification notifications/progress"
    )
    assert span_name(TraceRecord(kind=None)) == "mcp-operation"


def test_projection_uses_duration_for_span_end() -> None:
    projection = project_record(_record())
    start = to_epoch_ns(parse_iso(TIMESTAMP))

    assert projection.start_time_ns == start
    assert projection.end_time_ns == start + 10_000_000
    assert [(name, ts) for name, _, ts in projection.events] == [("request", start), ("response", start + 10_000_000)]
    assert projection.attributes["mcp.metadata.region"] == "eu"
    assert projection.attributes["mcp.metadata.tags"] == '["a", "b"]'
    assert projection.error is None


def test_projection_without_duration_ends_now() -> None:
    start = to_epoch_ns(parse_iso(TIMESTAMP))
    projection = project_record(_record(duration_ms=None, response=None), now_ns=start + 5)
    assert projection.end_time_ns == start + 5
    assert [name for name, _, _ in projection.events] == ["request"]


def test_export_produces_one_server_span() -> None:
    sink, exporter = _sink()
    sink.export(_record())

    (span,) = exporter.get_finished_spans()
    assert span.name == "request tools/call add"
    assert span.kind is SpanKind.SERVER
    assert span.attributes["mcp.type"] == "request"
    assert span.attributes["mcp.method"] == "tools/call"
    assert span.attributes["mcp.entity_name"] == "add"
    assert span.attributes["mcp.session_id"] == "session-1"
    assert span.attributes["mcp.duration_ms"] == 10
    assert span.end_time - span.start_time == 10_000_000
    assert [event.name for event in span.events] == ["request", "response"]
    assert span.status.status_code is StatusCode.OK


def test_error_records_set_error_status_and_exception_event() -> None:
    sink, exporter = _sink()
    sink.export(_record(error="-32000: divide by zero", is_error=True, response=None))

    (span,) = exporter.get_finished_spans()
    assert span.status.status_code is StatusCode.ERROR
    assert span.status.description == "-32000: divide by zero"
    assert "exception" in [event.name for event in span.events]
    assert span.attributes["mcp.is_error"] is True


def test_error_flag_without_message_still_marks_span() -> None:
    projection = project_record(_record(error=None, is_error=True))
    assert projection.error == "error"


def test_shutdown_flushes_injected_provider_without_closing_it() -> None:
    sink, exporter = _sink()
    sink.export(_record())
    asyncio.run(sink.shutdown())

    assert len(exporter.get_finished_spans()) == 1
    sink.export(_record(entity_name="sub"))
    assert len(exporter.get_finished_spans()) == 2


def test_protocol_selects_exporter_and_default_endpoint() -> None:
    from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as GrpcSpanExporter
    from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HttpSpanExporter

    http_sink = OTLPSink()
    assert http_sink.endpoint == "http://localhost:4318/v1/traces"
    assert isinstance(http_sink._create_exporter(), HttpSpanExporter)

    grpc_sink = OTLPSink(protocol="grpc")
    assert grpc_sink.endpoint == "http://localhost:4317"
    assert isinstance(grpc_sink._create_exporter(), GrpcSpanExporter)

    assert OTLPSink("http://collector:4317", protocol="grpc").endpoint == "http://collector:4317"


def test_unknown_protocol_is_rejected() -> None:
    with pytest.raises(TraceConfigurationError):
        OTLPSink(protocol="carrier-pigeon")
