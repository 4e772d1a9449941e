from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Server clock in UTC, tz stripped. All stored timestamps use this."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into a UTC-naive datetime.

    Blank input gives None. A bare date means midnight UTC, an offset-free
    timestamp is taken to already be UTC, and "Z" or "+HH:MM" suffixes are
    converted before the tzinfo is dropped.
    """
    text = _clean(value)
    if text is None:
        return None

    if text.endswith("Z"):
        text = text[:-1] + "+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.replace(tzinfo=None)


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse "YYYY-MM-DD" (a full datetime is accepted and truncated)."""
    text = _clean(value)
    if text is None:
        return None
    if len(text) == 10:
        return date.fromisoformat(text)
    return parse_iso_datetime(text).date()


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Render as second-precision ISO-8601 ending in 'Z'; naive means UTC."""
    if dt is None:
        return None
    aware = dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return aware.astimezone(timezone.utc).replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def to_iso_date(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d is not None else None
