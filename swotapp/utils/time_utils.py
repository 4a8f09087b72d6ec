"""Timezone-aware datetime helpers used across the match engine."""

from __future__ import annotations

import datetime as dt
from typing import Optional


UTC = dt.timezone.utc


def now_utc() -> dt.datetime:
    """Return the current time as an aware ``datetime`` in UTC."""

    return dt.datetime.now(UTC)


def _ensure_aware_utc(value: dt.datetime) -> dt.datetime:
    """Coerce ``value`` to an aware UTC datetime without altering the instant."""

    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_timestamp_ms(value: Optional[dt.datetime] = None) -> int:
    """Return ``value`` (default: now) as integer milliseconds since epoch."""

    moment = _ensure_aware_utc(value) if value is not None else now_utc()
    return int(moment.timestamp() * 1000)


__all__ = [
    "UTC",
    "now_utc",
    "to_timestamp_ms",
]
