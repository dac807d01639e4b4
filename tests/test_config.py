from pathlib import Path

import pytest
import structlog

from mcp_trace import TraceSettings, create_sink_from_env, instrument
from mcp_trace.core.scheduler import VirtualScheduler
from mcp_trace.exceptions import TraceConfigurationError
from mcp_trace.sinks import ConsoleSink, MultiSink
from mcp_trace.sinks.contexa import ContexaSink
from mcp_trace.sinks.file import FileSink
from mcp_trace.sinks.otlp import OTLPSink
from mcp_trace.utils.log import configure_logging

from .conftest import RecordingSink


@pytest.fixture(autouse=True)
def _reset_structlog():
    yield
    structlog.reset_defaults()


def test_settings_defaults() -> None:
    settings = TraceSettings.from_env({})
    assert settings.eviction_timeout == 300.0
    assert settings.bypass_header == "mcp-trace-bypass"
    assert settings.export_orphans is False
    assert settings.log_level == "INFO"
    assert settings.log_json is False


def test_settings_read_environment() -> None:
    settings = TraceSettings.from_env(
        {
            "MCP_TRACE_EVICTION_TIMEOUT": "12.5",
            "MCP_TRACE_BYPASS_HEADER": "x-no-trace",
            "MCP_TRACE_EXPORT_ORPHANS": "yes",
            "MCP_TRACE_LOG_LEVEL": "debug",
            "MCP_TRACE_LOG_JSON": "1",
        }
    )
    assert settings.eviction_timeout == 12.5
    assert settings.bypass_header == "x-no-trace"
    assert settings.export_orphans is True
    assert settings.log_level == "debug"
    assert settings.log_json is True


def test_invalid_timeout_is_a_configuration_error() -> None:
    with pytest.raises(TraceConfigurationError):
        TraceSettings.from_env({"MCP_TRACE_EVICTION_TIMEOUT": "soon"})


def test_default_sink_is_console() -> None:
    assert isinstance(create_sink_from_env({}), ConsoleSink)


def test_several_sinks_are_combined(tmp_path: Path) -> None:
    sink = create_sink_from_env(
        {
            "MCP_TRACE_SINKS": "console, file,contexa",
            "MCP_TRACE_FILE": str(tmp_path / "traces.jsonl"),
            "CONTEXA_API_KEY": "key",
            "CONTEXA_SERVER_ID": "server",
        }
    )
    assert isinstance(sink, MultiSink)
    assert [type(item) for item in sink.sinks] == [ConsoleSink, FileSink, ContexaSink]


def test_unknown_or_incomplete_sinks_are_rejected() -> None:
    with pytest.raises(TraceConfigurationError):
        create_sink_from_env({"MCP_TRACE_SINKS": "carrier-pigeon"})
    with pytest.raises(TraceConfigurationError):
        create_sink_from_env({"MCP_TRACE_SINKS": "postgres"})


def test_otlp_sink_reads_protocol_from_environment() -> None:
    sink = create_sink_from_env({"MCP_TRACE_SINKS": "otlp", "OTEL_EXPORTER_OTLP_PROTOCOL": "grpc", "OTEL_SERVICE_NAME": "calc"})
    assert isinstance(sink, OTLPSink)
    assert sink.protocol == "grpc"
    assert sink.endpoint == "http://localhost:4317"
    assert sink.service_name == "calc"

    sink = create_sink_from_env({"MCP_TRACE_SINKS": "otlp", "OTEL_EXPORTER_OTLP_PROTOCOL": "http/protobuf"})
    assert sink.protocol == "http"
    with pytest.raises(TraceConfigurationError):
        create_sink_from_env({"MCP_TRACE_SINKS": "otlp", "OTEL_EXPORTER_OTLP_PROTOCOL": "smoke-signals"})


def test_instrument_applies_settings() -> None:
    sink = RecordingSink()
    settings = TraceSettings(eviction_timeout=30, bypass_header="x-skip", export_orphans=True)
    tracer = instrument(sink, settings=settings, server_name="calc", scheduler=VirtualScheduler())

    assert tracer.sink is sink
    assert tracer.correlator.timeout == 30
    assert tracer.bypass_header == "x-skip"
    assert tracer.export_orphans is True
    assert tracer.builder.config.server_name == "calc"


def test_configure_logging_filters_below_level() -> None:
    configure_logging("WARNING", json_logs=True)
    logger = structlog.get_logger("mcp_trace.test")
    assert logger.info("ignored") is None
    config = structlog.get_config()
    assert isinstance(config["processors"][-1], structlog.processors.JSONRenderer)
