import asyncio
from typing import List

import pytest
from structlog.testing import capture_logs

from mcp_trace.core.record import RecordKind, TraceRecord
from mcp_trace.core.scheduler import VirtualScheduler
from mcp_trace.sinks import BufferedSink


class CollectingSink(BufferedSink):
    def __init__(self, *, failures: int = 0, hang: bool = False, **options: object) -> None:
        super().__init__(**options)
        self.failures = failures
        self.hang = hang
        self.calls = 0
        self.batches: List[List[TraceRecord]] = []
        self.closed = False

    async def deliver(self, records: List[TraceRecord]) -> None:
        self.calls += 1
        if self.hang:
            await asyncio.Event().wait()
        if self.calls <= self.failures:
            raise ConnectionError("backend unavailable")
        self.batches.append(list(records))

    async def close(self) -> None:
        self.closed = True

    @property
    def delivered(self) -> List[TraceRecord]:
        return [record for batch in self.batches for record in batch]


def _record(index: int) -> TraceRecord:
    return TraceRecord(kind=RecordKind.NOTIFICATION, method=f"notifications/{index}")


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


def test_overflow_drops_newest_record(scheduler: VirtualScheduler) -> None:
    sink = CollectingSink(capacity=2, batch_size=10, scheduler=scheduler)

    with capture_logs() as logs:
        for index in range(3):
            sink.export(_record(index))

    assert sink.queued == 2
    assert sink.dropped == 1
    assert [entry["event"] for entry in logs] == ["buffer_full_record_dropped"]

    asyncio.run(sink.flush())
    assert [record.method for record in sink.delivered] == ["notifications/0", "notifications/1"]
    assert sink.queued == 0


def test_periodic_timer_drains_queue(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(batch_size=10, flush_interval=1.0, scheduler=scheduler)
        sink.export(_record(1))
        sink.export(_record(2))
        assert scheduler.pending_timers == 1

        scheduler.advance(0.5)
        await _settle()
        assert sink.batches == []

        scheduler.advance(0.5)
        await _settle()
        assert len(sink.batches) == 1
        assert len(sink.batches[0]) == 2

        scheduler.advance(1.0)
        await _settle()
        assert scheduler.pending_timers == 0

    asyncio.run(run())


def test_reaching_batch_size_triggers_delivery(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(batch_size=2, flush_interval=60.0, scheduler=scheduler)
        sink.export(_record(1))
        await _settle()
        assert sink.batches == []

        sink.export(_record(2))
        await _settle()
        assert [len(batch) for batch in sink.batches] == [2]

    asyncio.run(run())


def test_flush_delivers_in_batches(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(batch_size=100, scheduler=scheduler)
        for index in range(5):
            sink.export(_record(index))
        sink.batch_size = 2

        await sink.flush()
        assert [len(batch) for batch in sink.batches] == [2, 2, 1]

    asyncio.run(run())


def test_failed_batch_is_retried_with_backoff(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(failures=1, max_attempts=3, retry_delay=2.0, backoff_factor=2.0, scheduler=scheduler)
        sink.export(_record(1))

        with capture_logs() as logs:
            await sink.flush()

        assert sink.calls == 2
        assert len(sink.delivered) == 1
        assert scheduler.now() == 2000
        assert [entry["event"] for entry in logs] == ["delivery_attempt_failed"]

    asyncio.run(run())


def test_batch_is_dropped_after_max_attempts(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(failures=10, max_attempts=3, retry_delay=2.0, backoff_factor=2.0, scheduler=scheduler)
        sink.export(_record(1))
        sink.export(_record(2))

        with capture_logs() as logs:
            await sink.flush()

        assert sink.calls == 3
        assert sink.delivered == []
        assert sink.dropped == 2
        assert sink.queued == 0
        assert scheduler.now() == 6000
        events = [entry["event"] for entry in logs]
        assert events.count("delivery_attempt_failed") == 3
        assert events[-1] == "max_retries_exceeded_records_dropped"
        assert logs[-1]["dropped"] == 2

    asyncio.run(run())


def test_flush_returns_when_timeout_elapses(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(hang=True, scheduler=scheduler)
        sink.export(_record(1))
        sink.export(_record(2))

        with capture_logs() as logs:
            await sink.flush(timeout=0.05)

        assert logs[-1]["event"] == "flush_timeout_reached"
        assert logs[-1]["abandoned_batch"] == 2

    asyncio.run(run())


def test_shutdown_flushes_and_rejects_later_records(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(batch_size=10, scheduler=scheduler)
        sink.export(_record(1))

        await sink.shutdown(timeout=1.0)
        assert len(sink.delivered) == 1
        assert sink.closed
        assert scheduler.pending_timers == 0

        with capture_logs() as logs:
            sink.export(_record(2))
        assert sink.queued == 0
        assert logs[0]["event"] == "buffered_sink_stopped_record_dropped"

    asyncio.run(run())


def test_invalid_buffer_options_are_rejected() -> None:
    with pytest.raises(ValueError):
        CollectingSink(capacity=0)
    with pytest.raises(ValueError):
        CollectingSink(batch_size=0)
    with pytest.raises(ValueError):
        CollectingSink(max_attempts=0)


def test_flush_timeout_bounds_wait_for_retrying_drain() -> None:
    async def run() -> None:
        sink = CollectingSink(failures=10, batch_size=1, max_attempts=3, retry_delay=1.0)
        sink.export(_record(1))
        sink.export(_record(2))
        await _settle()
        assert sink.calls == 1

        loop = asyncio.get_running_loop()
        started = loop.time()
        with capture_logs() as logs:
            await sink.flush(timeout=0.1)

        assert loop.time() - started < 0.5
        assert logs[-1]["event"] == "flush_timeout_reached"
        assert logs[-1]["remaining_records"] == 1
        await sink.shutdown(timeout=0.1)

    asyncio.run(run())


def test_shutdown_cancels_hanging_drain(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(hang=True, batch_size=1, scheduler=scheduler)
        sink.export(_record(1))
        await _settle()
        sink.export(_record(2))

        with capture_logs() as logs:
            await asyncio.wait_for(sink.shutdown(timeout=0.1), timeout=2)

        assert sink.closed
        assert sink.dropped + sink.queued == 2
        assert "drain_cancelled_on_shutdown" in [entry["event"] for entry in logs]

    asyncio.run(run())


def test_slow_destination_keeps_a_single_drain_task(scheduler: VirtualScheduler) -> None:
    async def run() -> None:
        sink = CollectingSink(hang=True, batch_size=1, scheduler=scheduler)
        for index in range(5):
            sink.export(_record(index))
            await asyncio.sleep(0)

        assert sink.calls == 1
        assert sink.queued == 4
        assert len(asyncio.all_tasks()) == 2
        await sink.shutdown(timeout=0.05)

    asyncio.run(run())
