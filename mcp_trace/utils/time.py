"""UTC time helpers."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format a datetime as ISO-8601 UTC with millisecond precision and a ``Z`` suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
    """Return the current UTC instant as ISO-8601 text."""
    return to_iso(utc_now())


def parse_iso(value: str) -> datetime:
    """Parse ISO-8601 text produced by :func:`to_iso` (``Z`` suffix accepted)."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_epoch_ns(value: datetime) -> int:
    """Convert a datetime to integer nanoseconds since the Unix epoch."""
    delta = value - datetime(1970, 1, 1, tzinfo=timezone.utc)
    return (delta // timedelta(microseconds=1)) * 1000
