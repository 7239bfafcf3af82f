from __future__ import annotations

import calendar
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_ms() -> int:
    """Milliseconds since the epoch, used when deriving idempotency keys."""
    return int(datetime.now(timezone.utc).timestamp() * 1000)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """
    Serializes datetime to ISO-8601 with trailing 'Z'.
    If dt is naive, it is treated as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt_utc = dt.astimezone(timezone.utc).replace(microsecond=0)
    return dt_utc.isoformat().replace("+00:00", "Z")


def month_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """
    Calendar month containing `moment`.

    Returns (first day 00:00:00, last day 23:59:59), both UTC-naive.
    """
    last_day = calendar.monthrange(moment.year, moment.month)[1]
    start = datetime(moment.year, moment.month, 1)
    end = datetime(moment.year, moment.month, last_day, 23, 59, 59)
    return start, end
