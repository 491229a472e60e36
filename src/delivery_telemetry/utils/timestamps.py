"""Timestamp helpers shared by events and the rate limiter."""

from datetime import datetime, timezone
from typing import Any

from dateutil import parser as dateutil_parser

# Epoch values above this are milliseconds (anything after 2001-09-09)
_MILLISECONDS_CUTOFF = 1e12


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def normalize_timestamp(value: Any) -> datetime:
    """Convert a timestamp in any supported form to an aware UTC datetime.

    Handles:
    - datetime: naive values are treated as UTC, aware values converted
    - int/float: epoch seconds, or milliseconds when the magnitude says so
    - str: ISO 8601 or anything python-dateutil understands

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp

    Example:
        >>> normalize_timestamp(1705084800)
        datetime.datetime(2024, 1, 12, 18, 40, tzinfo=datetime.timezone.utc)
    """
    if isinstance(value, bool):
        raise ValueError(f"Cannot parse timestamp: {value!r}")

    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        seconds = value / 1000 if value > _MILLISECONDS_CUTOFF else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    elif isinstance(value, str):
        dt = dateutil_parser.parse(value)
    else:
        raise ValueError(f"Cannot parse timestamp: {value!r} (type: {type(value).__name__})")

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)
