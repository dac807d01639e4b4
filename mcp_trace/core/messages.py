"""JSON-RPC message classification and transport side-channel metadata.

Raw messages are classified exactly once into one of the variants below;
the rest of the pipeline works with the variant, never the raw value.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union

from .record import RequestId

HeaderValue = Union[str, List[str], None]


@dataclass(frozen=True)
class JSONRPCRequest:
    id: RequestId
    method: str
    params: Optional[Dict[str, Any]]
    raw: Dict[str, Any]


@dataclass(frozen=True)
class JSONRPCNotification:
    method: str
    params: Optional[Dict[str, Any]]
    raw: Dict[str, Any]


@dataclass(frozen=True)
class JSONRPCResponse:
    id: RequestId
    result: Any
    error: Optional[Dict[str, Any]]
    raw: Dict[str, Any]

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def error_summary(self) -> Optional[str]:
        """Render the JSON-RPC error as ``"<code>: <message>"``."""
        if self.error is None:
            return None
        if isinstance(self.error, dict):
            return f"{self.error.get('code')}: {self.error.get('message')}"
        return str(self.error)


@dataclass(frozen=True)
class Unrecognized:
    raw: Any


ParsedMessage = Union[JSONRPCRequest, JSONRPCNotification, JSONRPCResponse, Unrecognized]


def _as_dict(message: Any) -> Optional[Dict[str, Any]]:
    if isinstance(message, dict):
        return message
    # Root-model wrappers (e.g. the MCP SDK's JSONRPCMessage) carry the variant in ``root``.
    root = getattr(message, "root", None)
    if root is not None and root is not message:
        return _as_dict(root)
    dump = getattr(message, "model_dump", None)
    if callable(dump):
        dumped = dump(by_alias=True, exclude_none=True)
        return dumped if isinstance(dumped, dict) else None
    return None


def parse_message(message: Any) -> ParsedMessage:
    """Classify a raw transport message into a JSON-RPC variant."""
    data = _as_dict(message)
    if data is None:
        return Unrecognized(raw=message)

    method = data.get("method")
    # A present "id" key marks a request or response even when its value is null.
    has_id = "id" in data
    request_id = data.get("id")
    params = data.get("params") if isinstance(data.get("params"), dict) else None

    if isinstance(method, str):
        if has_id:
            return JSONRPCRequest(id=request_id, method=method, params=params, raw=data)
        return JSONRPCNotification(method=method, params=params, raw=data)

    if has_id and ("result" in data or "error" in data):
        return JSONRPCResponse(id=request_id, result=data.get("result"), error=data.get("error"), raw=data)

    return Unrecognized(raw=message)


@dataclass(frozen=True)
class MessageExtra:
    """Side-channel metadata delivered alongside a message by the transport."""

    headers: Mapping[str, HeaderValue] = field(default_factory=dict)

    @classmethod
    def coerce(cls, value: Any) -> "MessageExtra":
        """Accept ``None``, an instance, or a mapping carrying ``headers``."""
        if value is None:
            return cls()
        if isinstance(value, MessageExtra):
            return value
        if isinstance(value, Mapping):
            headers = value.get("headers")
            if headers is None:
                request_info = value.get("request_info") or value.get("requestInfo")
                if isinstance(request_info, Mapping):
                    headers = request_info.get("headers")
            return cls(headers=headers or {})
        headers = getattr(value, "headers", None)
        if headers is None:
            request_info = getattr(value, "request_info", None)
            headers = getattr(request_info, "headers", None)
        return cls(headers=headers or {})

    def header(self, name: str) -> Optional[str]:
        """Case-insensitive header lookup; list values yield their first element."""
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() != wanted:
                continue
            if isinstance(value, (list, tuple)):
                return value[0] if value else None
            return value
        return None

    def header_dict(self) -> Dict[str, HeaderValue]:
        return {key.lower(): value for key, value in self.headers.items()}
