"""Buffered sink shipping traces to the Contexa ingest API."""

from __future__ import annotations

import json
import os
from typing import List, Optional

import httpx

from ..core.record import TraceRecord
from ..core.scheduler import Scheduler
from ..exceptions import DeliveryError, TraceConfigurationError
from .buffered import BufferedSink

DEFAULT_API_URL = "http://localhost:4000/v1/trace/ingest"


class ContexaSink(BufferedSink):
    """Queues records in memory and POSTs them in batches as ``{"traces": [...]}``.

    Credentials fall back to ``CONTEXA_API_KEY``, ``CONTEXA_SERVER_ID`` and
    ``CONTEXA_API_URL``.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        server_id: Optional[str] = None,
        api_url: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        request_timeout: float = 10.0,
        capacity: int = 1000,
        batch_size: int = 100,
        flush_interval: float = 1.0,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        backoff_factor: float = 1.0,
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
        self.api_key = api_key or os.getenv("CONTEXA_API_KEY", "")
        self.server_id = server_id or os.getenv("CONTEXA_SERVER_ID", "")
        self.api_url = api_url or os.getenv("CONTEXA_API_URL") or DEFAULT_API_URL

        if not self.api_key:
            raise TraceConfigurationError("Missing Contexa API key. Provide `api_key` or set CONTEXA_API_KEY.")
        if not self.server_id:
            raise TraceConfigurationError("Missing Contexa server ID. Provide `server_id` or set CONTEXA_SERVER_ID.")

        self.headers = {
            "X-API-KEY": self.api_key,
            "X-Server-ID": self.server_id,
            "Content-Type": "application/json",
        }
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=request_timeout)

    async def deliver(self, records: List[TraceRecord]) -> None:
        body = json.dumps({"traces": [record.to_dict() for record in records]}, default=str)
        try:
            response = await self._client.post(self.api_url, content=body, headers=self.headers)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"Contexa request failed: {exc}") from exc
        if response.is_success:
            return
        raise DeliveryError(
            f"Contexa server error (status {response.status_code}): {response.text}",
            status_code=response.status_code,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
