from __future__ import annotations

import io

import pytest
from openpyxl import load_workbook

from mrodb.apps.audits import dashboard, reports, schemas
from mrodb.apps.audits.tests.factories import NOW, make_action, make_audit, make_finding
from mrodb.apps.reports.renderer import render
from mrodb.errors import UnsupportedFormatError, ValidationError


def _ten_audits(db, principal):
    for i in range(6):
        make_audit(
            db,
            principal,
            status="COMPLETED",
            actual_start_date="2025-01-15",
            actual_end_date="2025-03-10" if i % 2 else "2025-01-20",
            compliance_rate=80.0 if i == 0 else (90.0 if i == 1 else None),
        )
    for _ in range(4):
        make_audit(db, principal, status="PLANNED", audit_type="SAFETY")


def test_dashboard_summary_and_upcoming(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    _ten_audits(db_session, admin)
    make_audit(db_session, tenants["principals"]["bravo_admin"], status="PLANNED")

    data = dashboard.dashboard(db_session, admin, now=NOW)

    assert data["summary"]["total_audits"] == 10
    assert data["summary"]["completed_audits"] == 6
    assert data["summary"]["completion_rate"] == 60.0
    assert data["summary"]["avg_compliance_rate"] == 85.0
    assert data["audit_counts"] == {"COMPLETED": 6, "PLANNED": 4}
    assert data["audit_types"] == {"INTERNAL": 6, "SAFETY": 4}
    assert len(data["recent_audits"]) == 5
    assert len(data["upcoming_audits"]) == 4


def test_completion_trend_counts_months_newest_first(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    _ten_audits(db_session, admin)

    trend = dashboard.completion_trend(db_session, admin, NOW)

    assert [t["month"] for t in trend] == ["2025-03", "2025-02", "2025-01", "2024-12", "2024-11", "2024-10"]
    assert trend[0]["count"] == 3
    assert trend[2]["count"] == 3
    assert trend[1]["count"] == 0


def test_dashboard_survives_a_failing_trend(db_session, tenants, monkeypatch):
    admin = tenants["principals"]["alpha_admin"]
    make_audit(db_session, admin)

    def boom(*args, **kwargs):
        raise RuntimeError("trend query failed")

    monkeypatch.setattr(dashboard, "completion_trend", boom)
    data = dashboard.dashboard(db_session, admin, now=NOW)

    assert data["completion_trend"] == []
    assert data["summary"]["total_audits"] == 1


def test_empty_tenant_has_zero_rates(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]

    data = dashboard.dashboard(db_session, admin, now=NOW)

    assert data["summary"]["completion_rate"] == 0.0
    assert data["summary"]["avg_compliance_rate"] is None
    assert dashboard.findings_analytics(db_session, admin, now=NOW)["completion_rate"] == 0.0
    assert dashboard.actions_analytics(db_session, admin, now=NOW)["completion_rate"] == 0.0


def test_findings_and_actions_analytics(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    audit = make_audit(db_session, admin)
    open_finding = make_finding(db_session, admin, audit, severity="CRITICAL", target_close_date="2025-03-01")
    make_finding(db_session, admin, audit, status="VERIFIED", target_close_date="2025-03-01")
    make_finding(db_session, admin, audit, status="CLOSED", department="Stores")
    make_finding(db_session, admin, audit, status="IN_PROGRESS", target_close_date="2025-06-01")
    make_action(db_session, admin, open_finding, target_date="2025-03-01", assigned_to="Ana")
    make_action(db_session, admin, open_finding, status="VERIFIED", assigned_to="Ana")
    make_action(db_session, admin, open_finding, status="IN_PROGRESS", assigned_to="Luis")

    findings = dashboard.findings_analytics(db_session, admin, now=NOW)
    actions = dashboard.actions_analytics(db_session, admin, now=NOW)

    assert findings["total"] == 4
    assert findings["open"] == 2
    assert findings["resolved"] == 2
    assert findings["overdue"] == 1
    assert findings["completion_rate"] == 50.0
    assert findings["by_severity"]["CRITICAL"] == 1
    assert findings["by_department"]["Stores"] == 1

    assert actions["total"] == 3
    assert actions["completed"] == 1
    assert actions["in_progress"] == 1
    assert actions["overdue"] == 1
    assert actions["completion_rate"] == 33.33
    assert actions["by_assignee"] == {"Ana": 2, "Luis": 1}


def test_audit_summary_report_respects_filters(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    completed = make_audit(db_session, admin, status="COMPLETED")
    make_audit(db_session, admin, status="PLANNED")
    make_finding(db_session, admin, completed, severity="CRITICAL")
    make_audit(db_session, tenants["principals"]["bravo_admin"], status="COMPLETED")

    report = reports.build_report(
        db_session,
        admin,
        schemas.ReportRequest(template="audit_summary", format="excel", statuses=["COMPLETED"]),
        now=NOW,
    )

    assert report.summary["total_audits"] == 1
    assert report.summary["critical_findings"] == 1
    assert report.sections[0].rows[0]["audit_number"] == completed.audit_number

    rendered = render(report, "excel")
    assert rendered.filename == "audit_summary-report-2025-03-19.xlsx"
    sheet = load_workbook(io.BytesIO(rendered.content))["Audits"]
    assert sheet.max_row == 2


def test_management_summary_recommendations(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    quiet = reports.build_report(
        db_session, admin, schemas.ReportRequest(template="management_summary", format="text"), now=NOW
    )
    audit = make_audit(db_session, admin, compliance_rate=70.0)
    finding = make_finding(db_session, admin, audit, severity="CRITICAL")
    make_action(db_session, admin, finding, target_date="2025-03-01")

    busy = reports.build_report(
        db_session, admin, schemas.ReportRequest(template="management_summary", format="text"), now=NOW
    )

    assert [r["recommendation"] for r in quiet.sections[0].rows] == [
        "Continue current audit practices and maintain compliance standards"
    ]
    assert [r["recommendation"] for r in busy.sections[0].rows] == [
        "Address 1 critical findings requiring immediate attention",
        "Review processes for 1 audits with low compliance rates",
        "Follow up on 1 overdue corrective actions",
    ]


def test_unknown_template_and_format_are_rejected(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]

    with pytest.raises(ValidationError):
        reports.build_report(db_session, admin, schemas.ReportRequest(template="nope", format="excel"))

    report = reports.build_report(db_session, admin, schemas.ReportRequest(template="audit_summary"))
    with pytest.raises(UnsupportedFormatError):
        render(report, "word")
