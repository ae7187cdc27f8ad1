from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (SQLite hands timestamps back naive)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_date(value) -> Optional[date]:
    """Accept a date, a datetime or an ISO `YYYY-MM-DD[...]` string."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def at_utc_noon(value: date) -> datetime:
    """Pin a calendar day to 12:00 UTC so it renders as the same day everywhere."""
    return datetime.combine(value, time(12, 0), tzinfo=timezone.utc)


def iso_day(value) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return as_utc(value).date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10]


def parse_datetime(value) -> Optional[datetime]:
    """
    Accept a datetime, a date or an ISO string and return an aware UTC value.

    Bare days (`YYYY-MM-DD`) are pinned to 12:00 UTC like every other
    calendar-day column.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return at_utc_noon(value)
    text = str(value).strip()
    if len(text) == 10:
        day = parse_date(text)
        return at_utc_noon(day) if day is not None else None
    try:
        return as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        return None
