# backend/mrodb/analytics.py
"""
Aggregation helpers shared by the dashboards and report builders.

All counts run through `scoping.build_filter`, so a dashboard can never
see another tenant's rows. Derived percentages are rounded to two
decimals and are exactly 0 when the denominator is 0.
"""

from __future__ import annotations

import calendar
import enum
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional, TypeVar

from sqlalchemy import func
from sqlalchemy.orm import Session

from .scoping import ListParams, build_filter
from .security import Principal
from .utils.dates import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

TREND_THRESHOLD = 5.0


def rate(part: float, total: float) -> float:
    if not total:
        return 0.0
    return round(part / total * 100, 2)


def percent_change(current: float, previous: float) -> float:
    if not previous:
        return 0.0
    return round((current - previous) / previous * 100, 2)


def classify_trend(change: float) -> str:
    if change > TREND_THRESHOLD:
        return "up"
    if change < -TREND_THRESHOLD:
        return "down"
    return "stable"


# ---------------------------------------------------------------------------
# Time windows: [start, end)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Window:
    start: datetime
    end: datetime

    def clauses(self, column) -> list:
        return [column >= self.start, column < self.end]


def _month_start(year: int, month: int, tzinfo) -> datetime:
    while month < 1:
        month += 12
        year -= 1
    while month > 12:
        month -= 12
        year += 1
    return datetime(year, month, 1, tzinfo=tzinfo)


def month_window(now: Optional[datetime] = None, months_ago: int = 0) -> Window:
    now = now or utcnow()
    start = _month_start(now.year, now.month - months_ago, now.tzinfo)
    end = _month_start(start.year, start.month + 1, now.tzinfo)
    return Window(start, end)


def week_window(now: Optional[datetime] = None) -> Window:
    """Calendar week starting on Sunday."""
    now = now or utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    start = today - timedelta(days=(today.weekday() + 1) % 7)
    return Window(start, start + timedelta(days=7))


def day_window(now: Optional[datetime] = None) -> Window:
    now = now or utcnow()
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return Window(start, start + timedelta(days=1))


def year_to_date_window(now: Optional[datetime] = None) -> Window:
    now = now or utcnow()
    return Window(datetime(now.year, 1, 1, tzinfo=now.tzinfo), month_window(now).end)


def last_days_window(days: int, now: Optional[datetime] = None) -> Window:
    now = now or utcnow()
    return Window(now - timedelta(days=days), now + timedelta(microseconds=1))


def month_progress(now: Optional[datetime] = None) -> float:
    now = now or utcnow()
    days_in_month = calendar.monthrange(now.year, now.month)[1]
    return rate(now.day, days_in_month)


def month_name(now: Optional[datetime] = None, months_ago: int = 0) -> str:
    return month_window(now, months_ago).start.strftime("%B")


# ---------------------------------------------------------------------------
# Grouped counts
# ---------------------------------------------------------------------------


def _label(value: Any) -> str:
    if value is None:
        return "unspecified"
    if isinstance(value, enum.Enum):
        return value.value
    return value


def count_rows(db: Session, principal: Principal, model, *criteria, params: Optional[ListParams] = None) -> int:
    return (
        db.query(func.count(model.id))
        .filter(build_filter(principal, model, params), *criteria)
        .scalar()
        or 0
    )


def grouped_counts(db: Session, principal: Principal, model, column, *criteria,
                   params: Optional[ListParams] = None) -> dict:
    rows = (
        db.query(column, func.count(model.id))
        .filter(build_filter(principal, model, params), *criteria)
        .group_by(column)
        .all()
    )
    return {_label(value): count for value, count in rows}


def top_values(db: Session, principal: Principal, model, column, limit: int = 3, *criteria) -> list:
    counted = func.count(model.id)
    rows = (
        db.query(column, counted)
        .filter(build_filter(principal, model), column.isnot(None), *criteria)
        .group_by(column)
        .order_by(counted.desc(), column.asc())
        .limit(limit)
        .all()
    )
    return [{"value": _label(value), "count": count} for value, count in rows]


def distinct_count(db: Session, principal: Principal, model, column, *criteria) -> int:
    return (
        db.query(func.count(func.distinct(column)))
        .filter(build_filter(principal, model), column.isnot(None), *criteria)
        .scalar()
        or 0
    )


def aggregate(
    db: Session,
    principal: Principal,
    model,
    dimensions: Mapping[str, Any],
    *,
    window_field=None,
    window: Optional[Window] = None,
    params: Optional[ListParams] = None,
) -> dict:
    """
    Count the principal's `model` rows and break them down per dimension.

    Returns `{total, grouped_counts: {dim: {value: n}}, derived_rates:
    {dim: {value: pct}}}` where every rate is relative to `total`.
    """
    criteria = window.clauses(window_field) if window is not None and window_field is not None else []
    total = count_rows(db, principal, model, *criteria, params=params)

    grouped: dict = {}
    rates: dict = {}
    for name, column in dimensions.items():
        counts = grouped_counts(db, principal, model, column, *criteria, params=params)
        grouped[name] = counts
        rates[name] = {value: rate(count, total) for value, count in counts.items()}

    return {"total": total, "grouped_counts": grouped, "derived_rates": rates}


def optional_enrichment(fn: Callable[[], T], fallback: T, label: str, db: Optional[Session] = None) -> T:
    """Run an optional sub-aggregation; on failure log it and return `fallback`."""
    try:
        return fn()
    except Exception as exc:
        logger.warning(
            "Optional aggregation failed; returning fallback",
            extra={"aggregation": label, "error": str(exc)},
        )
        if db is not None:
            db.rollback()
        return fallback
