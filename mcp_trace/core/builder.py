"""Conversion of intercepted messages into canonical trace records."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional, Union

import structlog

from .messages import JSONRPCNotification, JSONRPCRequest, JSONRPCResponse, MessageExtra, ParsedMessage
from .record import LogFields, RecordKind, TraceRecord, User

logger = structlog.get_logger(__name__)

RedactFunction = Callable[[Any], Any]
IdentifyUser = Callable[[Dict[str, Any]], Union[User, Mapping[str, Any], None]]

ENTITY_METHODS = frozenset({"tools/call", "prompts/get", "resources/read"})
SESSION_HEADER = "mcp-session-id"
CLIENT_HEADER = "user-agent"
IP_HEADERS = ("x-forwarded-for", "x-real-ip", "cf-connecting-ip", "x-client-ip", "remote-addr")

REDACTION_KEEP = "keep"
REDACTION_DROP = "drop"


@dataclass
class BuilderConfig:
    """Options controlling record construction."""

    log_fields: LogFields = LogFields()
    redact: Optional[RedactFunction] = None
    identify_user: Optional[IdentifyUser] = None
    redaction_failure: str = REDACTION_KEEP
    server_name: Optional[str] = None
    server_version: Optional[str] = None
    session_header: str = SESSION_HEADER


class RecordBuilder:
    """Builds filtered, redacted :class:`TraceRecord` objects from parsed messages."""

    def __init__(self, config: Optional[BuilderConfig] = None) -> None:
        self.config = config or BuilderConfig()
        if self.config.redaction_failure not in {REDACTION_KEEP, REDACTION_DROP}:
            raise ValueError(f"redaction_failure must be 'keep' or 'drop', got {self.config.redaction_failure!r}")

    def build(
        self,
        message: ParsedMessage,
        extra: Optional[MessageExtra] = None,
        transport: Any = None,
    ) -> Optional[TraceRecord]:
        """Build a record for a request or notification; other variants yield ``None``."""
        if isinstance(message, JSONRPCRequest):
            kind = RecordKind.REQUEST
            request_id = message.id
        elif isinstance(message, JSONRPCNotification):
            kind = RecordKind.NOTIFICATION
            request_id = None
        else:
            return None

        extra = extra or MessageExtra()
        record = self._base_record(kind, message.raw, extra, transport)
        record.method = message.method
        record.request_id = request_id
        record.entity_name = extract_entity_name(message.method, message.params)
        record.request = self.redact(message.params)
        if message.method == "initialize" and message.params:
            client_info = message.params.get("clientInfo") or {}
            record.client_name = client_info.get("name")
            record.client_version = client_info.get("version")
        return self.filter(record)

    def build_response(
        self,
        message: JSONRPCResponse,
        extra: Optional[MessageExtra] = None,
        transport: Any = None,
    ) -> TraceRecord:
        """Build a standalone record for a response that matched no pending request."""
        record = self._base_record(RecordKind.REQUEST, message.raw, extra or MessageExtra(), transport)
        record.request_id = message.id
        record.response = self.redact(message.result)
        record.error = message.error_summary()
        record.is_error = message.is_error
        return self.filter(record)

    def combine(self, request: TraceRecord, response: JSONRPCResponse, duration_ms: int) -> TraceRecord:
        """Merge a pending request record with its response."""
        combined = request.copy(
            duration_ms=max(0, int(duration_ms)),
            response=self.redact(response.result),
            error=response.error_summary(),
            is_error=response.is_error,
        )
        return self.filter(combined)

    def redact(self, payload: Any) -> Any:
        """Apply the configured redaction function to one payload tree."""
        if self.config.redact is None or payload is None:
            return payload
        try:
            return self.config.redact(payload)
        except Exception as exc:
            logger.warning(
                "redaction_failed",
                error=str(exc),
                policy=self.config.redaction_failure,
            )
            if self.config.redaction_failure == REDACTION_DROP:
                return None
            return payload

    def filter(self, record: TraceRecord) -> TraceRecord:
        return self.config.log_fields.apply(record)

    def _base_record(
        self,
        kind: RecordKind,
        raw: Dict[str, Any],
        extra: MessageExtra,
        transport: Any,
    ) -> TraceRecord:
        user = self._identify(extra)
        return TraceRecord(
            kind=kind,
            session_id=extract_session_id(extra, transport, self.config.session_header),
            client_id=extract_client_id(raw, extra),
            ip_address=extract_ip_address(extra),
            user_id=user.user_id,
            user_name=user.user_name,
            user_email=user.user_email,
            server_name=self.config.server_name,
            server_version=self.config.server_version,
        )

    def _identify(self, extra: MessageExtra) -> User:
        if self.config.identify_user is None or not extra.headers:
            return User()
        try:
            user = self.config.identify_user(extra.header_dict())
        except Exception as exc:
            logger.warning("identify_user_failed", error=str(exc))
            return User()
        if user is None:
            return User()
        if isinstance(user, User):
            return user
        return User(
            user_id=user.get("user_id"),
            user_name=user.get("user_name"),
            user_email=user.get("user_email"),
        )


def extract_entity_name(method: Optional[str], params: Optional[Dict[str, Any]]) -> Optional[str]:
    """Name of the tool, prompt or resource a method operates on."""
    if method not in ENTITY_METHODS or not params:
        return None
    name = params.get("name")
    if not name and method == "resources/read":
        name = params.get("uri")
    return str(name) if name else None


def extract_session_id(extra: MessageExtra, transport: Any, header: str = SESSION_HEADER) -> str:
    session_id = extra.header(header)
    if session_id:
        return session_id
    transport_session = getattr(transport, "session_id", None)
    return str(transport_session) if transport_session else ""


def extract_client_id(raw: Dict[str, Any], extra: MessageExtra) -> Optional[str]:
    params = raw.get("params") if isinstance(raw.get("params"), dict) else {}
    meta = params.get("_meta") if isinstance(params.get("_meta"), dict) else {}
    context = raw.get("context") if isinstance(raw.get("context"), dict) else {}
    raw_meta = raw.get("_meta") if isinstance(raw.get("_meta"), dict) else {}
    for candidate in (meta.get("clientId"), raw_meta.get("clientId"), raw.get("clientId"), context.get("clientId")):
        if candidate:
            return str(candidate)
    return extra.header(CLIENT_HEADER) or None


def extract_ip_address(extra: MessageExtra) -> Optional[str]:
    for name in IP_HEADERS:
        value = extra.header(name)
        if not value:
            continue
        if name == "x-forwarded-for":
            return value.split(",")[0].strip()
        return value
    return None
