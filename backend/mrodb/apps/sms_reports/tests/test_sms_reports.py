from __future__ import annotations

import pytest
from fastapi import BackgroundTasks

from mrodb.apps.sms_reports import models, router, services
from mrodb.apps.sms_reports.schemas import SmsReportInput
from mrodb.errors import ExternalServiceError, NotFound, ValidationError
from mrodb.tests.helpers import make_file, make_request


def _payload(**overrides) -> SmsReportInput:
    values = {
        "date": "2025-05-02",
        "report_title": "Tug struck wingtip",
        "report_description": "Tug contacted left wingtip during pushback.",
        "reporter_name": "Sam",
        "reporter_email": "sam@example.com",
    }
    values.update(overrides)
    return SmsReportInput(**values)


def test_report_numbers_are_sequential_per_company(db_session, tenants, storage):
    alpha_tech = tenants["principals"]["alpha_tech"]
    bravo_tech = tenants["principals"]["bravo_tech"]

    first = services.create_report(db_session, storage, alpha_tech, _payload())
    second = services.create_report(db_session, storage, alpha_tech, _payload())
    other = services.create_report(db_session, storage, bravo_tech, _payload())

    assert (first.report_number, second.report_number) == ("sms01", "sms02")
    assert other.report_number == "sms01"


def test_aggregate_limit_rejects_before_creating(db_session, tenants, storage, monkeypatch):
    tech = tenants["principals"]["alpha_tech"]
    monkeypatch.setattr(services, "MAX_UPLOAD_BYTES", 10)

    with pytest.raises(ValidationError) as excinfo:
        services.create_report(
            db_session, storage, tech, _payload(), [make_file("a.jpg", b"123456"), make_file("b.jpg", b"123456")]
        )

    assert excinfo.value.message.startswith("Total upload size")
    assert db_session.query(models.SmsReport).count() == 0


def test_upload_failure_rolls_back_report(db_session, tenants, failing_upload_storage):
    tech = tenants["principals"]["alpha_tech"]

    with pytest.raises(ExternalServiceError):
        services.create_report(db_session, failing_upload_storage, tech, _payload(), [make_file("a.jpg", b"1")])

    assert db_session.query(models.SmsReport).count() == 0


def test_missing_title_is_a_validation_error(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]

    with pytest.raises(ValidationError) as excinfo:
        services.create_report(db_session, storage, tech, _payload(report_title=None))

    assert excinfo.value.field == "report_title"


def test_non_admins_only_see_their_own_reports(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    admin = tenants["principals"]["alpha_admin"]
    own = services.create_report(db_session, storage, tech, _payload())
    admins = services.create_report(db_session, storage, admin, _payload(report_title="Fuel spill"))

    assert [r.id for r in services.list_reports(db_session, tech)["items"]] == [own.id]
    assert {r.id for r in services.list_reports(db_session, admin)["items"]} == {own.id, admins.id}
    with pytest.raises(NotFound):
        services.get_report(db_session, tech, admins.id)


def test_delete_removes_every_attachment(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    report = services.create_report(
        db_session, storage, tech, _payload(), [make_file("a.jpg", b"1"), make_file("b.jpg", b"2")]
    )
    keys = [a.file_key for a in report.attachments]

    results = services.delete_report(db_session, storage, tech, report.id)

    assert sorted(r["file_key"] for r in results) == sorted(keys)
    assert all(r["success"] for r in results)
    assert db_session.query(models.SmsReportAttachment).count() == 0
    assert db_session.query(models.SmsReport).count() == 0


def test_submit_queues_confirmation_email(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    background = BackgroundTasks()

    response = router.submit_report(
        request=make_request(),
        background_tasks=background,
        payload=_payload(),
        files=None,
        db=db_session,
        storage=storage,
        principal=tech,
    )

    assert response["success"] is True
    assert response["email_queued"] is True
    assert response["data"].report_number == "sms01"
    assert len(background.tasks) == 1
