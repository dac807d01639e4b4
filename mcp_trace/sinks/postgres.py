"""PostgreSQL sink for trace records."""

from __future__ import annotations

import json
import re
from typing import Any, List, Optional, Tuple

import asyncpg
import structlog

from ..core.record import TraceRecord
from ..core.scheduler import Scheduler
from ..exceptions import TraceConfigurationError
from ..utils.time import parse_iso
from .buffered import BufferedSink

logger = structlog.get_logger(__name__)

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id SERIAL PRIMARY KEY,
    timestamp TIMESTAMPTZ NOT NULL,
    type TEXT NOT NULL,
    method TEXT,
    session_id TEXT NOT NULL,
    client_id TEXT,
    duration INTEGER,
    entity_name TEXT,
    arguments JSONB,
    response TEXT,
    error TEXT
)
"""

INSERT_SQL = """
INSERT INTO {table} (
    timestamp,
    type,
    method,
    session_id,
    client_id,
    duration,
    entity_name,
    arguments,
    response,
    error
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8::jsonb, $9, $10)
"""


def record_to_row(record: TraceRecord) -> Tuple[Any, ...]:
    """Project a record onto the ``trace_events`` column order."""
    if record.response is None:
        response = None
    elif isinstance(record.response, str):
        response = record.response
    else:
        response = json.dumps(record.response, default=str)
    return (
        parse_iso(record.timestamp) if record.timestamp else None,
        record.kind.value if record.kind else "request",
        record.method,
        record.session_id or "",
        record.client_id,
        record.duration_ms,
        record.entity_name,
        json.dumps(record.request, default=str) if record.request is not None else None,
        response,
        record.error,
    )


class PostgresSink(BufferedSink):
    """Batches records and writes each batch with one ``executemany`` via ``asyncpg``.

    The table is expected to exist unless ``create_table`` is set.
    """

    def __init__(
        self,
        dsn: Optional[str] = None,
        *,
        pool: Optional[asyncpg.Pool] = None,
        table_name: str = "trace_events",
        create_table: bool = False,
        min_size: int = 1,
        max_size: int = 10,
        capacity: int = 1000,
        batch_size: int = 50,
        flush_interval: float = 1.0,
        max_attempts: int = 3,
        retry_delay: float = 1.0,
        backoff_factor: float = 2.0,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        super().__init__(
            capacity=capacity,
            batch_size=batch_size,
            flush_interval=flush_interval,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
            backoff_factor=backoff_factor,
            scheduler=scheduler,
        )
        if dsn is None and pool is None:
            raise TraceConfigurationError("Either `dsn` or `pool` must be provided for PostgresSink.")
        if not _IDENTIFIER_RE.match(table_name):
            raise TraceConfigurationError(f"Invalid table name: {table_name!r}")
        self._dsn = dsn
        self._pool = pool
        self._owns_pool = pool is None
        self._min_size = min_size
        self._max_size = max_size
        self.table_name = table_name
        self.create_table = create_table
        self._table_ready = not create_table

    async def connect(self) -> None:
        """Initialize a connection pool if one was not supplied."""
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                dsn=self._dsn,
                min_size=self._min_size,
                max_size=self._max_size,
            )
        if not self._table_ready:
            async with self._pool.acquire() as conn:
                await conn.execute(CREATE_TABLE_SQL.format(table=self.table_name))
            self._table_ready = True
            logger.info("trace_table_ready", table=self.table_name)

    async def deliver(self, records: List[TraceRecord]) -> None:
        await self.connect()
        assert self._pool is not None
        rows = [record_to_row(record) for record in records]
        async with self._pool.acquire() as conn:
            await conn.executemany(INSERT_SQL.format(table=self.table_name), rows)

    async def close(self) -> None:
        """Close the underlying pool if this sink created it."""
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None
