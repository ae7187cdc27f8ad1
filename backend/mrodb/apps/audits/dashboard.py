"""
Audit dashboard and analytics payloads.

Everything here is read-only and tenant-filtered through
`mrodb.analytics`; the completion trend is an optional enrichment that
degrades to an empty list.
"""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ... import analytics
from ...scoping import build_filter
from ...security import Principal
from ...utils.dates import as_utc, utcnow
from . import models
from .services import overdue_criteria

A = models.Audit
F = models.AuditFinding
CA = models.CorrectiveAction

UPCOMING_DAYS = 30
TREND_MONTHS = 6


def findings_analytics(
    db: Session, principal: Principal, audit_id: Optional[str] = None, now: Optional[datetime] = None
) -> dict:
    now = now or utcnow()
    scope = [F.audit_id == audit_id] if audit_id else []

    total = analytics.count_rows(db, principal, F, *scope)
    resolved = analytics.count_rows(db, principal, F, F.status.in_(models.RESOLVED_FINDING_STATUSES), *scope)
    return {
        "total": total,
        "open": analytics.count_rows(db, principal, F, F.status.in_(models.OPEN_FINDING_STATUSES), *scope),
        "resolved": resolved,
        "overdue": analytics.count_rows(
            db,
            principal,
            F,
            F.status.notin_(models.RESOLVED_FINDING_STATUSES),
            F.target_close_date < now,
            *scope,
        ),
        "completion_rate": analytics.rate(resolved, total),
        "by_status": analytics.grouped_counts(db, principal, F, F.status, *scope),
        "by_severity": analytics.grouped_counts(db, principal, F, F.severity, *scope),
        "by_department": analytics.grouped_counts(db, principal, F, F.department, *scope),
    }


def actions_analytics(db: Session, principal: Principal, now: Optional[datetime] = None) -> dict:
    total = analytics.count_rows(db, principal, CA)
    completed = analytics.count_rows(db, principal, CA, CA.status.in_(models.DONE_ACTION_STATUSES))
    return {
        "total": total,
        "completed": completed,
        "in_progress": analytics.count_rows(db, principal, CA, CA.status == models.ActionStatus.IN_PROGRESS),
        "overdue": analytics.count_rows(db, principal, CA, *overdue_criteria(now)),
        "completion_rate": analytics.rate(completed, total),
        "by_status": analytics.grouped_counts(db, principal, CA, CA.status),
        "by_priority": analytics.grouped_counts(db, principal, CA, CA.priority),
        "by_assignee": analytics.grouped_counts(db, principal, CA, CA.assigned_to),
    }


def completion_trend(db: Session, principal: Principal, now: Optional[datetime] = None,
                     months: int = TREND_MONTHS) -> list:
    """Completed audits per month (`YYYY-MM`), newest month first, zeros included."""
    now = now or utcnow()
    buckets = OrderedDict(
        (analytics.month_window(now, offset).start.strftime("%Y-%m"), 0) for offset in range(months)
    )
    since = analytics.month_window(now, months - 1).start
    rows = (
        db.query(A.actual_end_date)
        .filter(
            build_filter(principal, A),
            A.status == models.AuditStatus.COMPLETED,
            A.actual_end_date >= since,
        )
        .all()
    )
    for (ended,) in rows:
        key = as_utc(ended).strftime("%Y-%m")
        if key in buckets:
            buckets[key] += 1
    return [{"month": month, "count": count} for month, count in buckets.items()]


def dashboard(db: Session, principal: Principal, timeframe: int = 30, now: Optional[datetime] = None) -> dict:
    now = now or utcnow()
    window_start = now - timedelta(days=timeframe)

    by_status = analytics.grouped_counts(db, principal, A, A.status)
    total = sum(by_status.values())
    completed = by_status.get(models.AuditStatus.COMPLETED.value, 0)

    avg_compliance = (
        db.query(func.avg(A.compliance_rate))
        .filter(
            build_filter(principal, A),
            A.status == models.AuditStatus.COMPLETED,
            A.compliance_rate.isnot(None),
        )
        .scalar()
    )

    recent = (
        db.query(A)
        .filter(build_filter(principal, A))
        .order_by(A.created_at.desc(), A.id.desc())
        .limit(5)
        .all()
    )
    upcoming = (
        db.query(A)
        .filter(
            build_filter(principal, A),
            A.planned_start_date >= now,
            A.planned_start_date <= now + timedelta(days=UPCOMING_DAYS),
            A.status.in_((models.AuditStatus.PLANNED, models.AuditStatus.IN_PROGRESS)),
        )
        .order_by(A.planned_start_date.asc(), A.id.asc())
        .limit(10)
        .all()
    )

    return {
        "summary": {
            "total_audits": total,
            "completed_audits": completed,
            "completion_rate": analytics.rate(completed, total),
            "open_findings": analytics.count_rows(
                db, principal, F, F.status.in_(models.OPEN_FINDING_STATUSES)
            ),
            "overdue_actions": analytics.count_rows(db, principal, CA, *overdue_criteria(now)),
            "avg_compliance_rate": round(avg_compliance, 2) if avg_compliance is not None else None,
        },
        "audit_counts": by_status,
        "audit_types": analytics.grouped_counts(db, principal, A, A.audit_type),
        "findings_by_severity": analytics.grouped_counts(db, principal, F, F.severity, F.created_at >= window_start),
        "recent_audits": recent,
        "upcoming_audits": upcoming,
        "completion_trend": analytics.optional_enrichment(
            lambda: completion_trend(db, principal, now),
            [],
            "audit_completion_trend",
            db=db,
        ),
    }
