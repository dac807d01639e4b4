"""Example: trace an in-memory MCP transport and print every record to the console."""

from __future__ import annotations

import asyncio
from typing import Any, List

from mcp_trace import ConsoleSink, instrument


class InMemoryTransport:
    """Minimal callback-style transport standing in for stdio or streamable HTTP."""

    def __init__(self) -> None:
        self.on_message = None
        self.session_id = "demo-session"
        self.outbox: List[Any] = []

    async def send(self, message: Any, options: Any = None) -> None:
        self.outbox.append(message)

    def receive(self, message: Any, headers: dict) -> None:
        self.on_message(message, {"request_info": {"headers": headers}})


async def main() -> None:
    tracer = instrument(ConsoleSink(), server_name="calculator", server_version="1.0.0", configure_logs=True)
    transport = tracer.attach(InMemoryTransport())

    async def handle(message: dict, extra: Any) -> None:
        if message.get("method") == "tools/call":
            await asyncio.sleep(0.01)
            arguments = message["params"]["arguments"]
            await transport.send({"jsonrpc": "2.0", "id": message["id"], "result": {"sum": arguments["a"] + arguments["b"]}})

    pending = []
    transport.on_message = lambda message, extra: pending.append(asyncio.ensure_future(handle(message, extra)))

    headers = {"mcp-session-id": "sess-42", "user-agent": "example-client/0.1"}
    transport.wrapped.receive(
        {"jsonrpc": "2.0", "method": "notifications/initialized"},
        headers,
    )
    transport.wrapped.receive(
        {"jsonrpc": "2.0", "id": 1, "method": "tools/call", "params": {"name": "add", "arguments": {"a": 1, "b": 2}}},
        headers,
    )
    transport.wrapped.receive(
        {"jsonrpc": "2.0", "id": 2, "method": "tools/list"},
        {**headers, "mcp-trace-bypass": "1"},
    )

    await asyncio.gather(*pending)
    await tracer.shutdown(timeout=5.0)


if __name__ == "__main__":
    asyncio.run(main())
