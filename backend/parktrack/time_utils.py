from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional


_EPOCH = datetime(1970, 1, 1)


def utcnow() -> datetime:
    """Server-side 'now' in UTC (naive, canonical)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


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


def to_epoch_millis(dt: datetime) -> int:
    """UTC-naive (or aware) datetime -> integer milliseconds since the epoch."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    delta = dt - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def from_epoch_millis(millis: int) -> datetime:
    """Inverse of to_epoch_millis; returns a UTC-naive datetime."""
    return _EPOCH + timedelta(milliseconds=millis)


def month_bounds(year: int, month: int) -> tuple[datetime, datetime]:
    """
    Calendar month as a half-open [start, end) pair of UTC-naive datetimes.
    """
    start = datetime(year, month, 1)
    if month == 12:
        end = datetime(year + 1, 1, 1)
    else:
        end = datetime(year, month + 1, 1)
    return start, end


def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def whole_days_between(earlier: datetime, later: datetime) -> int:
    if later <= earlier:
        return 0
    return (later - earlier).days


