"""Timestamp handling: update sites publish compact UTC timestamps."""

from __future__ import annotations

import re
from datetime import datetime, timezone

import pendulum

# Compact output format: YYYYMMDDHHMMSS, always UTC
TIMESTAMP_FORMAT = "%Y%m%d%H%M%S"

_TIMESTAMP_RE = re.compile(r"^\d{14}$")


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(timezone.utc)


def format_timestamp(dt: datetime) -> str:
    """Format a datetime as a compact UTC timestamp."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """Parse a compact timestamp, or any lax datetime string, into an aware datetime.

    Accepts:
    - 20130315120000
    - 2013-03-15 12:00:00
    - ISO 8601 variants with T separator

    Missing timezone defaults to UTC.
    """
    value_str = value.strip()
    if _TIMESTAMP_RE.match(value_str):
        return pendulum.from_format(value_str, "YYYYMMDDHHmmss", tz="UTC")  # type: ignore[return-value]

    parsed = pendulum.parse(value_str, tz="UTC", strict=False)
    if not isinstance(parsed, pendulum.DateTime):
        # pendulum.parse returns Date for date-only strings
        parsed = pendulum.datetime(parsed.year, parsed.month, parsed.day, tz="UTC")  # type: ignore[union-attr]
    return parsed  # type: ignore[return-value]


def is_timestamp(value: str) -> bool:
    """Return True when ``value`` looks like a compact timestamp."""
    return bool(_TIMESTAMP_RE.match(value.strip()))


def timestamp_from_mtime(mtime: float) -> str:
    """Convert a filesystem modification time to a compact timestamp."""
    return format_timestamp(datetime.fromtimestamp(mtime, tz=timezone.utc))
