"""Transport wrapper that observes every inbound and outbound message."""

from __future__ import annotations

from typing import Any, Callable, Optional, Protocol

import structlog

logger = structlog.get_logger(__name__)

MessageHandler = Callable[..., Any]


class MessageObserver(Protocol):
    """Receives a look at each message before the transport delivers it."""

    def on_inbound(self, message: Any, extra: Any, transport: Any) -> None:
        ...

    def on_outbound(self, message: Any, extra: Any, transport: Any) -> None:
        ...


class TracedTransport:
    """Wraps a callback-style transport without changing its delivery.

    The wrapped transport must expose an ``on_message`` hook attribute and a
    ``send(message, ...)`` method. Inbound messages reach the observer first
    and are then handed to whichever handler was installed before attaching,
    or the one the application assigns to ``traced.on_message`` afterwards.
    ``send`` returns exactly what the wrapped ``send`` returns. Observer
    failures are logged and never reach the transport or the application.
    """

    def __init__(self, transport: Any, observer: MessageObserver) -> None:
        self._transport = transport
        self._observer = observer
        self._handler: Optional[MessageHandler] = getattr(transport, "on_message", None)
        transport.on_message = self._receive

    @property
    def wrapped(self) -> Any:
        return self._transport

    @property
    def on_message(self) -> Optional[MessageHandler]:
        return self._handler

    @on_message.setter
    def on_message(self, handler: Optional[MessageHandler]) -> None:
        self._handler = handler

    def _receive(self, message: Any, *args: Any, **kwargs: Any) -> Any:
        extra = args[0] if args else kwargs.get("extra")
        try:
            self._observer.on_inbound(message, extra, self)
        except Exception as exc:
            logger.error("inbound_trace_failed", error=str(exc))
        if self._handler is not None:
            return self._handler(message, *args, **kwargs)
        return None

    def send(self, message: Any, *args: Any, **kwargs: Any) -> Any:
        extra = args[0] if args else kwargs.get("options")
        try:
            self._observer.on_outbound(message, extra, self)
        except Exception as exc:
            logger.error("outbound_trace_failed", error=str(exc))
        return self._transport.send(message, *args, **kwargs)

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        return getattr(self._transport, name)


def attach(transport: Any, observer: MessageObserver) -> TracedTransport:
    """Wrap ``transport`` so ``observer`` sees every message it carries."""
    return TracedTransport(transport, observer)
