"""
Millisecond timestamp helpers.

Stores keep every timestamp as epoch milliseconds internally. ClickHouse
returns DateTime64 values as ISO strings, SQLite returns integers, callers
pass ISO strings or datetimes; these helpers normalise all of them.
"""

from __future__ import annotations

import time
from datetime import date, datetime, timedelta, timezone
from typing import Any

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def now_ms() -> int:
    return time.time_ns() // 1_000_000


def to_millis(value: Any) -> int | None:
    """Convert a timestamp-like value to epoch milliseconds.

    Accepts ints/floats (already milliseconds), datetimes, dates, ISO-8601
    strings (with or without offset, 'Z' allowed) and ClickHouse
    'YYYY-MM-DD HH:MM:SS.fff' strings. Naive values are taken as UTC.

    Returns:
        Milliseconds, or None when the value is empty or unparseable
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, datetime):
        moment = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return (moment - _EPOCH) // timedelta(milliseconds=1)
    if isinstance(value, date):
        return to_millis(datetime(value.year, value.month, value.day, tzinfo=timezone.utc))
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return int(text)
        try:
            return to_millis(datetime.fromisoformat(text))
        except ValueError:
            return None
    return None


def to_iso(value: Any) -> str | None:
    """Render a timestamp-like value as an ISO-8601 UTC string with milliseconds."""
    millis = to_millis(value)
    if millis is None:
        return None
    moment = datetime.fromtimestamp(millis // 1000, tz=timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{millis % 1000:03d}Z"
