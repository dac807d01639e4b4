from typing import Any, List, Optional

import pytest

from mcp_trace.core.record import TraceRecord
from mcp_trace.core.scheduler import VirtualScheduler


class FakeTransport:
    """Callback-style transport: the host calls ``on_message``, the app calls ``send``."""

    def __init__(self, session_id: Optional[str] = None) -> None:
        self.on_message = None
        self.session_id = session_id
        self.sent: List[Any] = []
        self.closed = False

    async def send(self, message: Any, options: Any = None) -> str:
        self.sent.append(message)
        return "sent"

    def deliver(self, message: Any, extra: Any = None) -> Any:
        return self.on_message(message, extra)

    async def close(self) -> None:
        self.closed = True


class RecordingSink:
    def __init__(self) -> None:
        self.records: List[TraceRecord] = []

    def export(self, record: TraceRecord) -> None:
        self.records.append(record)


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport(session_id="transport-session")
