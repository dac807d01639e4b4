"""Canonical trace record model and field-filtering configuration."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from ..exceptions import TraceConfigurationError
from ..utils.time import utc_now_iso

RequestId = Union[str, int]

SDK_LANGUAGE = "python"
SDK_VERSION = "0.2.0"


class RecordKind(str, Enum):
    """Kind of traced operation."""

    REQUEST = "request"
    NOTIFICATION = "notification"


@dataclass(frozen=True)
class User:
    """Identity attached to a traced message by an ``identify_user`` callable."""

    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None


@dataclass
class TraceRecord:
    """One traced MCP operation, as handed to every sink.

    ``request``/``response`` hold payloads after redaction. ``duration_ms`` is
    only set once a request has been matched with its response.
    """

    kind: RecordKind
    timestamp: str = field(default_factory=utc_now_iso)
    session_id: str = ""
    method: Optional[str] = None
    request_id: Optional[RequestId] = None
    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_version: Optional[str] = None
    server_name: Optional[str] = None
    server_version: Optional[str] = None
    duration_ms: Optional[int] = None
    entity_name: Optional[str] = None
    request: Any = None
    response: Any = None
    error: Optional[str] = None
    is_error: Optional[bool] = None
    ip_address: Optional[str] = None
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None
    sdk_language: Optional[str] = SDK_LANGUAGE
    sdk_version: Optional[str] = SDK_VERSION
    metadata: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for sinks, omitting unset fields."""
        payload: Dict[str, Any] = {}
        for item in fields(self):
            value = getattr(self, item.name)
            if value is None:
                continue
            if isinstance(value, RecordKind):
                value = value.value
            payload[item.name] = value
        return payload

    def copy(self, **changes: Any) -> "TraceRecord":
        return replace(self, **changes)


# Field switch name -> record attributes it controls.
LOG_FIELD_ATTRIBUTES: Dict[str, Tuple[str, ...]] = {
    "type": ("kind",),
    "method": ("method",),
    "timestamp": ("timestamp",),
    "session_id": ("session_id",),
    "client_id": ("client_id",),
    "duration": ("duration_ms",),
    "entity_name": ("entity_name",),
    "arguments": ("request",),
    "response": ("response",),
    "error": ("error", "is_error"),
    "ip_address": ("ip_address",),
    "user": ("user_id", "user_name", "user_email"),
    "metadata": ("metadata",),
}


@dataclass(frozen=True)
class LogFields:
    """Per-field enable switches; every field is logged by default."""

    type: bool = True
    method: bool = True
    timestamp: bool = True
    session_id: bool = True
    client_id: bool = True
    duration: bool = True
    entity_name: bool = True
    arguments: bool = True
    response: bool = True
    error: bool = True
    ip_address: bool = True
    user: bool = True
    metadata: bool = True

    @classmethod
    def from_value(cls, value: Union["LogFields", Mapping[str, bool], None]) -> "LogFields":
        """Build from an instance, a partial mapping of switches, or ``None``."""
        if value is None:
            return cls()
        if isinstance(value, LogFields):
            return value
        unknown = sorted(set(value) - set(LOG_FIELD_ATTRIBUTES))
        if unknown:
            raise TraceConfigurationError(f"Unknown log field(s): {', '.join(unknown)}")
        return cls(**{key: bool(enabled) for key, enabled in value.items()})

    def disabled_attributes(self) -> Tuple[str, ...]:
        disabled = []
        for name, attributes in LOG_FIELD_ATTRIBUTES.items():
            if not getattr(self, name):
                disabled.extend(attributes)
        return tuple(disabled)

    def apply(self, record: TraceRecord) -> TraceRecord:
        """Return ``record`` with every disabled field cleared."""
        disabled = self.disabled_attributes()
        if not disabled:
            return record
        return record.copy(**{name: None for name in disabled})
