"""
Timestamp normalization.

User records carry timestamps written by different producers: Firestore returns
`DatetimeWithNanoseconds`, trigger payloads arrive as ISO-8601 strings or epoch
milliseconds, and tests pass plain datetimes. Everything is normalized to
timezone-aware UTC datetimes before comparison, to avoid mixing naive and aware values.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: str) -> datetime:
    """Parse an ISO-8601 string (accepting a trailing `Z`) into an aware UTC datetime."""
    value = value.strip()
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(value))


def to_datetime(value: Any) -> datetime | None:
    """Best-effort conversion of a stored timestamp into an aware UTC datetime.

    Accepts datetimes, epoch milliseconds (int/float), ISO strings, and objects
    exposing `to_datetime()` (protobuf-style timestamps). Returns None for
    anything else, including malformed strings.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    if isinstance(value, str):
        try:
            return parse_datetime(value)
        except ValueError:
            return None
    to_dt = getattr(value, "to_datetime", None)
    if callable(to_dt):
        return ensure_utc(to_dt())
    return None


def to_epoch_ms(value: Any) -> int | None:
    dt = to_datetime(value)
    if dt is None:
        return None
    return int(round(dt.timestamp() * 1000))
