from __future__ import annotations

from datetime import datetime, timezone

from mrodb.apps.audits import schemas, services

NOW = datetime(2025, 3, 19, 15, 0, tzinfo=timezone.utc)


def make_audit(db, principal, **overrides):
    values = {
        "title": "Line station audit",
        "audit_type": "INTERNAL",
        "department": "Line Maintenance",
        "lead_auditor": "R. Santos",
        "planned_start_date": "2025-04-01",
        "planned_end_date": "2025-04-03",
    }
    values.update(overrides)
    return services.create_audit(db, principal, schemas.AuditInput(**values), now=NOW)


def make_finding(db, principal, audit, **overrides):
    values = {"audit_id": audit.id, "title": "Expired torque wrench calibration"}
    values.update(overrides)
    return services.create_finding(db, principal, schemas.FindingInput(**values))


def make_action(db, principal, finding, **overrides):
    values = {"finding_id": finding.id, "title": "Recalibrate tooling", "target_date": "2025-04-15"}
    values.update(overrides)
    return services.create_action(db, principal, schemas.CorrectiveActionInput(**values))
