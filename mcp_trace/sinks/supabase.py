"""Supabase sink writing through the project's PostgREST endpoint."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

import httpx

from ..core.record import TraceRecord
from ..exceptions import DeliveryError, TraceConfigurationError
from .base import Sink


def record_to_row(record: TraceRecord) -> Dict[str, Any]:
    response = record.response
    if response is not None and not isinstance(response, str):
        response = json.dumps(response, default=str)
    return {
        "timestamp": record.timestamp,
        "type": record.kind.value if record.kind else "request",
        "method": record.method,
        "session_id": record.session_id or "",
        "client_id": record.client_id,
        "duration": record.duration_ms,
        "entity_name": record.entity_name,
        "arguments": record.request,
        "response": response,
        "error": record.error,
    }


class SupabaseSink(Sink):
    """Inserts each record into a Supabase table as soon as it is exported.

    Either pass ``url`` and ``api_key`` or an ``httpx.AsyncClient`` already
    configured with the project base URL and auth headers.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        *,
        client: Optional[httpx.AsyncClient] = None,
        table_name: str = "trace_events",
        timeout: float = 10.0,
    ) -> None:
        if client is None and not (url and api_key):
            raise TraceConfigurationError("SupabaseSink needs `url` and `api_key`, or a configured `client`.")
        self.table_name = table_name
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers={"apikey": api_key, "Authorization": f"Bearer {api_key}"},
            timeout=timeout,
        )

    async def export(self, record: TraceRecord) -> None:
        response = await self._client.post(
            f"/rest/v1/{self.table_name}",
            content=json.dumps([record_to_row(record)], default=str),
            headers={"Content-Type": "application/json", "Prefer": "return=minimal"},
        )
        if response.status_code >= 300:
            raise DeliveryError(
                f"Supabase insert into {self.table_name!r} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

    async def shutdown(self) -> None:
        if self._owns_client:
            await self._client.aclose()
