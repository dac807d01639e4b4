"""Human-readable trace output for local development."""

from __future__ import annotations

import json
import sys
from typing import Any, Optional, TextIO

from ..core.record import TraceRecord
from .base import Sink

RESET = "\x1b[0m"
BOLD = "\x1b[1m"
COLORS = {
    "red": "\x1b[31m",
    "yellow": "\x1b[33m",
    "cyan": "\x1b[36m",
    "gray": "\x1b[90m",
    "bg_red": "\x1b[41m",
    "bg_green": "\x1b[42m",
}


class ConsoleSink(Sink):
    """Prints one boxed block per record to a text stream."""

    def __init__(self, stream: Optional[TextIO] = None, *, color: bool = True) -> None:
        self.stream = stream or sys.stdout
        self.color = color

    def export(self, record: TraceRecord) -> None:
        status = (
            self._paint(" ERROR ", "bg_red", bold=True)
            if record.error
            else self._paint(" SUCCESS ", "bg_green", bold=True)
        )
        lines = ["", self._rule(), f"{self._paint('Trace Log', 'cyan', bold=True)} {status}", self._rule()]
        duration = f"{record.duration_ms} ms" if record.duration_ms is not None else None
        for label, value, color in (
            ("Type", record.kind.value if record.kind else None, "yellow"),
            ("Method", record.method, "yellow"),
            ("Timestamp", record.timestamp, "yellow"),
            ("Session ID", record.session_id or None, "yellow"),
            ("Client ID", record.client_id, "yellow"),
            ("Duration", duration, "yellow"),
            ("Entity Name", record.entity_name, "yellow"),
            ("Request", _format_json(record.request), "yellow"),
            ("Response", _format_json(record.response), "yellow"),
            ("Error", record.error, "red"),
        ):
            if value is None:
                continue
            lines.append(f"{self._paint(f'{label}:'.ljust(18), color)} {value}")
        lines.extend([self._rule(), ""])
        self.stream.write("\n".join(lines) + "\n")
        self.stream.flush()

    def _paint(self, text: str, color: str, *, bold: bool = False) -> str:
        if not self.color:
            return text
        return f"{COLORS[color]}{BOLD if bold else ''}{text}{RESET}"

    def _rule(self) -> str:
        return self._paint("─" * 50, "gray")


def _format_json(value: Any) -> Optional[str]:
    if value is None:
        return None
    try:
        return json.dumps(value, indent=2, default=str)
    except (TypeError, ValueError):
        return "[Unserializable object]"
