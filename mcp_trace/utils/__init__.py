"""Utility helpers for logging and time operations."""

from .log import configure_logging
from .time import parse_iso, to_epoch_ns, to_iso, utc_now, utc_now_iso

__all__ = ["configure_logging", "utc_now", "utc_now_iso", "to_iso", "parse_iso", "to_epoch_ns"]
