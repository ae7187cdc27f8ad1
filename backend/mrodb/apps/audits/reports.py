"""
Report data for `POST /audits/reports/generate`.

Each template turns the filtered audits of one tenant into a
`ReportData`; formatting is left to `apps.reports.renderer`.
"""

from __future__ import annotations

import math
from collections import Counter
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from ... import analytics
from ...errors import ValidationError
from ...scoping import ListParams, scoped_query
from ...security import Principal
from ...utils.dates import as_utc, parse_date, utcnow
from ..reports.renderer import ReportData, ReportSection
from . import models, schemas

REGULATORY_TYPES = (models.AuditType.REGULATORY, models.AuditType.COMPLIANCE, models.AuditType.EXTERNAL)

# Below this compliance rate an audit is called out in the management summary.
LOW_COMPLIANCE_THRESHOLD = 85.0


def _is_open(action: models.CorrectiveAction) -> bool:
    return action.status not in models.DONE_ACTION_STATUSES


def _is_overdue(action: models.CorrectiveAction, now: datetime) -> bool:
    return _is_open(action) and action.target_date is not None and as_utc(action.target_date) < now


def _actions(audits: List[models.Audit]) -> List[Tuple[models.Audit, models.AuditFinding, models.CorrectiveAction]]:
    return [(a, f, ca) for a in audits for f in a.findings for ca in f.corrective_actions]


def _findings(audits: List[models.Audit]) -> List[Tuple[models.Audit, models.AuditFinding]]:
    return [(a, f) for a in audits for f in a.findings]


def _avg_compliance(audits: List[models.Audit]) -> Optional[float]:
    rates = [a.compliance_rate for a in audits if a.compliance_rate is not None]
    if not rates:
        return None
    return round(sum(rates) / len(rates), 2)


def _completion_rate(audits: List[models.Audit]) -> float:
    completed = sum(1 for a in audits if a.status == models.AuditStatus.COMPLETED)
    return analytics.rate(completed, len(audits))


def _counts(values, order) -> List[dict]:
    counter = Counter(values)
    return [{"value": key.value, "count": counter.get(key, 0)} for key in order]


def _audit_row(audit: models.Audit) -> dict:
    findings = audit.findings
    return {
        "audit_number": audit.audit_number,
        "title": audit.title,
        "audit_type": audit.audit_type,
        "status": audit.status,
        "department": audit.department,
        "lead_auditor": audit.lead_auditor,
        "planned_start_date": audit.planned_start_date,
        "planned_end_date": audit.planned_end_date,
        "compliance_rate": audit.compliance_rate,
        "findings": len(findings),
        "critical_findings": sum(1 for f in findings if f.severity == models.FindingSeverity.CRITICAL),
        "open_actions": sum(1 for f in findings for ca in f.corrective_actions if _is_open(ca)),
    }


def _finding_row(audit: models.Audit, finding: models.AuditFinding) -> dict:
    return {
        "audit_number": audit.audit_number,
        "finding_number": finding.finding_number,
        "title": finding.title,
        "severity": finding.severity,
        "status": finding.status,
        "department": finding.department or audit.department,
        "target_close_date": finding.target_close_date,
        "corrective_actions": len(finding.corrective_actions),
    }


def _action_row(audit: models.Audit, finding: models.AuditFinding, action: models.CorrectiveAction,
                now: datetime) -> dict:
    return {
        "audit_number": audit.audit_number,
        "finding_number": finding.finding_number,
        "action_number": action.action_number,
        "title": action.title,
        "action_type": action.action_type,
        "priority": action.priority,
        "status": action.status,
        "assigned_to": action.assigned_to,
        "target_date": action.target_date,
        "completed_date": action.completed_date,
        "overdue": _is_overdue(action, now),
    }


def _resolution_days(action: models.CorrectiveAction) -> int:
    finished = as_utc(action.completed_date or action.updated_at)
    return math.ceil(abs((finished - as_utc(action.created_at)).total_seconds()) / 86400)


def recommendations(audits: List[models.Audit], now: datetime) -> List[str]:
    items = []
    critical = sum(1 for _, f in _findings(audits) if f.severity == models.FindingSeverity.CRITICAL)
    if critical:
        items.append(f"Address {critical} critical findings requiring immediate attention")
    low = [a for a in audits if a.compliance_rate is not None and a.compliance_rate < LOW_COMPLIANCE_THRESHOLD]
    if low:
        items.append(f"Review processes for {len(low)} audits with low compliance rates")
    overdue = sum(1 for _, _, ca in _actions(audits) if _is_overdue(ca, now))
    if overdue:
        items.append(f"Follow up on {overdue} overdue corrective actions")
    if not items:
        items.append("Continue current audit practices and maintain compliance standards")
    return items


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def audit_summary(audits: List[models.Audit], now: datetime) -> ReportData:
    findings = _findings(audits)
    statuses = Counter(a.status for a in audits)
    return ReportData(
        template="audit_summary",
        title="Audit Summary Report",
        summary={
            "total_audits": len(audits),
            "completed_audits": statuses.get(models.AuditStatus.COMPLETED, 0),
            "in_progress_audits": statuses.get(models.AuditStatus.IN_PROGRESS, 0),
            "planned_audits": statuses.get(models.AuditStatus.PLANNED, 0),
            "total_findings": len(findings),
            "critical_findings": sum(1 for _, f in findings if f.severity == models.FindingSeverity.CRITICAL),
            "open_actions": sum(1 for _, _, ca in _actions(audits) if _is_open(ca)),
        },
        sections=[ReportSection("Audits", [_audit_row(a) for a in audits])],
    )


def compliance_metrics(audits: List[models.Audit], now: datetime) -> ReportData:
    findings = [f for _, f in _findings(audits)]
    return ReportData(
        template="compliance_metrics",
        title="Compliance Metrics Report",
        summary={
            "total_audits": len(audits),
            "completion_rate": _completion_rate(audits),
            "avg_compliance_rate": _avg_compliance(audits),
        },
        sections=[
            ReportSection("Findings by severity", _counts((f.severity for f in findings), models.FindingSeverity)),
            ReportSection("Audit types", _counts((a.audit_type for a in audits), models.AuditType)),
        ],
    )


def findings_analysis(audits: List[models.Audit], now: datetime) -> ReportData:
    pairs = _findings(audits)
    findings = [f for _, f in pairs]
    departments = Counter((f.department or a.department or "Unknown") for a, f in pairs)
    months = Counter(as_utc(f.created_at).strftime("%Y-%m") for f in findings)
    return ReportData(
        template="findings_analysis",
        title="Findings Analysis Report",
        summary={"total_findings": len(findings)},
        sections=[
            ReportSection("Severity breakdown", _counts((f.severity for f in findings), models.FindingSeverity)),
            ReportSection("Status breakdown", _counts((f.status for f in findings), models.FindingStatus)),
            ReportSection("By department", [{"department": d, "count": n} for d, n in sorted(departments.items())]),
            ReportSection("Monthly trend", [{"month": m, "count": n} for m, n in sorted(months.items())]),
            ReportSection("Findings", [_finding_row(a, f) for a, f in pairs]),
        ],
    )


def corrective_actions(audits: List[models.Audit], now: datetime) -> ReportData:
    triples = _actions(audits)
    actions = [ca for _, _, ca in triples]
    completed = [ca for ca in actions if ca.status == models.ActionStatus.COMPLETED]
    avg_days = round(sum(_resolution_days(ca) for ca in completed) / len(completed), 2) if completed else 0
    return ReportData(
        template="corrective_actions",
        title="Corrective Actions Report",
        summary={
            "total_actions": len(actions),
            "completed_actions": len(completed),
            "in_progress_actions": sum(1 for ca in actions if ca.status == models.ActionStatus.IN_PROGRESS),
            "overdue_actions": sum(1 for ca in actions if _is_overdue(ca, now)),
            "avg_resolution_days": avg_days,
        },
        sections=[ReportSection("Corrective Actions", [_action_row(a, f, ca, now) for a, f, ca in triples])],
    )


def regulatory_compliance(audits: List[models.Audit], now: datetime) -> ReportData:
    regulatory = [a for a in audits if a.audit_type in REGULATORY_TYPES]
    return ReportData(
        template="regulatory_compliance",
        title="Regulatory Compliance Report",
        summary={
            "total_regulatory_audits": len(regulatory),
            "avg_compliance_rate": _avg_compliance(regulatory),
            "non_compliant_audits": sum(1 for a in regulatory if (a.compliance_rate or 0) < 100),
            "critical_issues": sum(
                1 for _, f in _findings(regulatory) if f.severity == models.FindingSeverity.CRITICAL
            ),
        },
        sections=[ReportSection("Audits", [_audit_row(a) for a in regulatory])],
    )


def management_summary(audits: List[models.Audit], now: datetime) -> ReportData:
    findings = [f for _, f in _findings(audits)]
    return ReportData(
        template="management_summary",
        title="Management Summary Report",
        summary={
            "total_audits": len(audits),
            "completion_rate": _completion_rate(audits),
            "avg_compliance_rate": _avg_compliance(audits),
            "critical_findings": sum(1 for f in findings if f.severity == models.FindingSeverity.CRITICAL),
            "major_findings": sum(1 for f in findings if f.severity == models.FindingSeverity.MAJOR),
            "overdue_actions": sum(1 for _, _, ca in _actions(audits) if _is_overdue(ca, now)),
        },
        sections=[
            ReportSection("Key recommendations", [{"recommendation": r} for r in recommendations(audits, now)])
        ],
    )


TEMPLATES: Dict[str, Callable[[List[models.Audit], datetime], ReportData]] = {
    "audit_summary": audit_summary,
    "compliance_metrics": compliance_metrics,
    "findings_analysis": findings_analysis,
    "corrective_actions": corrective_actions,
    "regulatory_compliance": regulatory_compliance,
    "management_summary": management_summary,
}


def filtered_audits(db: Session, principal: Principal, request: schemas.ReportRequest) -> List[models.Audit]:
    A = models.Audit
    date_range = request.date_range or schemas.DateRange()
    params = ListParams(
        enum_filters={A.audit_type: request.audit_types, A.status: request.statuses},
        date_field=A.planned_start_date,
        start=parse_date(date_range.start),
        end=parse_date(date_range.end),
    )
    return (
        scoped_query(db, principal, A, params)
        .populate_existing()
        .order_by(A.planned_start_date.desc(), A.id.desc())
        .all()
    )


def build_report(
    db: Session, principal: Principal, request: schemas.ReportRequest, now: Optional[datetime] = None
) -> ReportData:
    builder = TEMPLATES.get(request.template)
    if builder is None:
        raise ValidationError(f"Invalid report template: {request.template}", field="template")
    now = now or utcnow()
    report = builder(filtered_audits(db, principal, request), now)
    report.generated_at = now
    return report
