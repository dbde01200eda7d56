from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


# All timestamps are stored and compared as naive UTC.


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware values are shifted to UTC and made naive; naive values pass through."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Client-supplied ISO-8601 instant -> naive UTC.

    Blank input gives None. A bare "YYYY-MM-DDTHH:MM[:SS]" is read as UTC,
    and a "Z" suffix or numeric offset is honoured. Raises ValueError for
    anything fromisoformat rejects.
    """
    text = (value or "").strip()
    if not text:
        return None
    if text[-1] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    return normalize_utc(datetime.fromisoformat(text))


def in_half_open_window(start: datetime, end: datetime, now: datetime) -> bool:
    """start <= now < end"""
    return normalize_utc(start) <= now < normalize_utc(end)


def whole_days_between(earlier: datetime, later: datetime) -> int:
    return (normalize_utc(later) - normalize_utc(earlier)).days


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """JSON form of a timestamp: second precision, UTC, trailing 'Z'."""
    if dt is None:
        return None
    aware = dt if dt.tzinfo is not None else dt.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
