"""Tracing middleware tying interception, correlation and export together."""

from __future__ import annotations

import asyncio
import functools
import inspect
from typing import Any, Awaitable, Callable, Mapping, Optional, Set, Union

import structlog

from ..sinks.base import supports_flush, supports_shutdown, validate_sink
from .builder import REDACTION_KEEP, SESSION_HEADER, BuilderConfig, IdentifyUser, RecordBuilder, RedactFunction
from .correlator import DEFAULT_EVICTION_TIMEOUT, DEFAULT_MAX_PENDING, PendingCorrelation, RequestCorrelator
from .interceptor import attach
from .messages import JSONRPCNotification, JSONRPCRequest, JSONRPCResponse, MessageExtra, parse_message
from .record import LogFields, TraceRecord
from .scheduler import Scheduler

logger = structlog.get_logger(__name__)

BYPASS_HEADER = "mcp-trace-bypass"
_FALSY_HEADER_VALUES = frozenset({"", "0", "false", "no", "off"})


class TraceMiddleware:
    """Traces every JSON-RPC message on the transports it is attached to.

    Requests are held by a :class:`RequestCorrelator` until the matching
    response is sent, then exported once as a combined record with its
    duration. Notifications are exported immediately, and responses with no
    pending request are exported on their own. Export calls are issued but
    never awaited on the message path, so a slow sink cannot delay delivery.

    Example::

        tracer = TraceMiddleware(ConsoleSink())
        transport = tracer.attach(transport)
    """

    def __init__(
        self,
        sink: Any,
        *,
        log_fields: Union[LogFields, Mapping[str, bool], None] = None,
        redact: Optional[RedactFunction] = None,
        identify_user: Optional[IdentifyUser] = None,
        redaction_failure: str = REDACTION_KEEP,
        server_name: Optional[str] = None,
        server_version: Optional[str] = None,
        eviction_timeout: float = DEFAULT_EVICTION_TIMEOUT,
        max_pending: Optional[int] = DEFAULT_MAX_PENDING,
        export_orphans: bool = False,
        bypass_header: str = BYPASS_HEADER,
        session_header: str = SESSION_HEADER,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        validate_sink(sink)
        self.sink = sink
        self.builder = RecordBuilder(
            BuilderConfig(
                log_fields=LogFields.from_value(log_fields),
                redact=redact,
                identify_user=identify_user,
                redaction_failure=redaction_failure,
                server_name=server_name,
                server_version=server_version,
                session_header=session_header,
            )
        )
        self.correlator = RequestCorrelator(
            scheduler=scheduler,
            timeout=eviction_timeout,
            max_pending=max_pending,
            on_evict=self._on_evict if export_orphans else None,
        )
        self.export_orphans = export_orphans
        self.bypass_header = bypass_header
        self._inflight: Set[asyncio.Task] = set()

    @property
    def pending_requests(self) -> int:
        return len(self.correlator)

    def attach(self, transport: Any) -> Any:
        """Return a traced wrapper of ``transport``, or ``transport`` itself if wrapping fails."""
        try:
            return attach(transport, self)
        except Exception as exc:
            logger.error("transport_setup_failed", transport=type(transport).__name__, error=str(exc))
            return transport

    def wrap_connect(self, connect: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        """Decorate a server ``connect(transport)`` coroutine so every transport is traced."""

        @functools.wraps(connect)
        async def traced_connect(transport: Any, *args: Any, **kwargs: Any) -> Any:
            return await connect(self.attach(transport), *args, **kwargs)

        return traced_connect

    def on_inbound(self, message: Any, extra: Any, transport: Any) -> None:
        parsed = parse_message(message)
        if not isinstance(parsed, (JSONRPCRequest, JSONRPCNotification)):
            return
        side_channel = MessageExtra.coerce(extra)
        if self._is_bypassed(side_channel):
            if isinstance(parsed, JSONRPCRequest):
                self.correlator.ignore(parsed.id)
            return

        record = self.builder.build(parsed, side_channel, transport)
        if record is None:
            return
        if isinstance(parsed, JSONRPCRequest):
            self.correlator.begin(parsed.id, record)
        else:
            self._dispatch(record)

    def on_outbound(self, message: Any, extra: Any, transport: Any) -> None:
        parsed = parse_message(message)
        if isinstance(parsed, JSONRPCResponse):
            self._handle_response(parsed, transport)
        elif isinstance(parsed, JSONRPCNotification):
            record = self.builder.build(parsed, None, transport)
            if record is not None:
                self._dispatch(record)

    def _handle_response(self, response: JSONRPCResponse, transport: Any) -> None:
        entry = self.correlator.resolve(response.id)
        if entry is None:
            logger.debug("response_without_pending_request", request_id=response.id)
            self._dispatch(self.builder.build_response(response, None, transport))
            return
        if entry.record is None:
            return
        duration_ms = self.correlator.elapsed_ms(entry)
        self._dispatch(self.builder.combine(entry.record, response, duration_ms))

    def _on_evict(self, entry: PendingCorrelation) -> None:
        if entry.record is None:
            return
        orphan = entry.record.copy(
            duration_ms=self.correlator.elapsed_ms(entry),
            error=f"timeout: no response within {self.correlator.timeout:g}s",
            is_error=True,
        )
        self._dispatch(self.builder.filter(orphan))

    def _is_bypassed(self, extra: MessageExtra) -> bool:
        value = extra.header(self.bypass_header)
        if value is None:
            return False
        return str(value).strip().lower() not in _FALSY_HEADER_VALUES

    def _dispatch(self, record: TraceRecord) -> None:
        try:
            result = self.sink.export(record)
        except Exception as exc:
            logger.error("sink_export_failed", method=record.method, request_id=record.request_id, error=str(exc))
            return
        if not inspect.isawaitable(result):
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("export_dropped_no_event_loop", method=record.method, request_id=record.request_id)
            if inspect.iscoroutine(result):
                result.close()
            return
        task = loop.create_task(self._await_export(result, record))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _await_export(self, pending: Awaitable[Any], record: TraceRecord) -> None:
        try:
            await pending
        except Exception as exc:
            logger.error("sink_export_failed", method=record.method, request_id=record.request_id, error=str(exc))

    async def flush(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight exports, then flush the sink, within ``timeout`` seconds."""
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        if self._inflight:
            _, still_running = await asyncio.wait(set(self._inflight), timeout=timeout)
            if still_running:
                logger.warning("flush_timeout_inflight_exports", remaining=len(still_running))
        if not supports_flush(self.sink):
            return
        remaining = None if deadline is None else max(0.0, deadline - loop.time())
        try:
            await asyncio.wait_for(_maybe_await(self.sink.flush(remaining)), timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning("sink_flush_timeout", timeout=timeout)
        except Exception as exc:
            logger.error("sink_flush_failed", error=str(exc))

    async def shutdown(self, timeout: Optional[float] = None) -> None:
        """Cancel eviction timers, flush, and shut the sink down within ``timeout``; never raises."""
        try:
            self.correlator.clear()
            loop = asyncio.get_running_loop()
            deadline = None if timeout is None else loop.time() + timeout
            await self.flush(timeout)
            if supports_shutdown(self.sink):
                remaining = None if deadline is None else max(0.0, deadline - loop.time())
                await asyncio.wait_for(_maybe_await(self.sink.shutdown()), timeout=remaining)
        except asyncio.TimeoutError:
            logger.warning("sink_shutdown_timeout", timeout=timeout)
        except Exception as exc:
            logger.error("shutdown_failed", error=str(exc))


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value
