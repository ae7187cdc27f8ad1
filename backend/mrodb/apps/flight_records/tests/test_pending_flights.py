from __future__ import annotations

from datetime import date, datetime, timezone

import pytest

from mrodb.apps.activity.models import UserActivity
from mrodb.apps.flight_records import models, router, services
from mrodb.apps.flight_records.schemas import FlightCompletionInput, FlightRecordInput, TemporaryFlightInput
from mrodb.apps.storage import service as attachments
from mrodb.errors import Forbidden, NotFound, ValidationError
from mrodb.tests.helpers import make_file

NOW = datetime(2025, 3, 19, 15, 0, tzinfo=timezone.utc)


def _pending(db_session, principal, created_at=None, **overrides):
    values = {"date": "2025-03-19", "airline": "Arajet", "station": "sdq", "flight_number": "DM101"}
    values.update(overrides)
    record = services.create_temporary(db_session, principal, TemporaryFlightInput(**values))
    if created_at is not None:
        record.created_at = created_at
        db_session.commit()
    return record


def _completed(db_session, storage, principal, **overrides):
    values = {"date": "2025-03-19", "airline": "Arajet", "fleet": "B737-8", "station": "SDQ"}
    values.update(overrides)
    return services.create_record(db_session, storage, principal, FlightRecordInput(**values))


def _completion(**overrides) -> FlightCompletionInput:
    values = {"fleet": "B737-8", "service": "Transit", "tail": "HI1026"}
    values.update(overrides)
    return FlightCompletionInput(**values)


def test_create_temporary_holds_only_the_announced_fields(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]

    record = _pending(db_session, tech)

    assert record.is_temporary is True
    assert record.date.hour == 12
    assert record.station == "SDQ"
    assert (record.fleet, record.service) == ("", "")
    assert record.technician == tech.full_name
    activity = db_session.query(UserActivity).one()
    assert activity.resource_title == "Temporal Flight: Arajet DM101 - SDQ"


def test_create_temporary_requires_flight_number_and_rejects_duplicates(db_session, tenants):
    alpha = tenants["principals"]["alpha_tech"]
    bravo = tenants["principals"]["bravo_tech"]
    _pending(db_session, alpha)

    with pytest.raises(ValidationError) as excinfo:
        _pending(db_session, alpha, flight_number=" ")
    assert excinfo.value.field == "flight_number"

    with pytest.raises(ValidationError) as excinfo:
        _pending(db_session, alpha, station="SDQ")
    assert "already exists" in excinfo.value.message

    _pending(db_session, bravo)
    _pending(db_session, alpha, date="2025-03-20")
    assert db_session.query(models.FlightRecord).count() == 3


def test_pending_flights_stay_out_of_the_main_views(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    _completed(db_session, storage, tech, station="PUJ")
    _pending(db_session, tech, station="STI")

    listed = services.list_records(db_session, tech)
    dashboard = services.dashboard_metrics(db_session, tech, now=NOW)

    assert [r.station for r in listed["items"]] == ["PUJ"]
    assert dashboard["total_flights"] == 1
    assert dashboard["unique_stations"] == 1
    assert services.stations_count(db_session, tech) == {"count": 1, "stations": ["PUJ"]}


def test_list_temporary_filters_by_day_and_tenant(db_session, tenants):
    alpha = tenants["principals"]["alpha_tech"]
    _pending(db_session, alpha, date="2025-03-18", flight_number="DM1")
    _pending(db_session, alpha, date="2025-03-20", flight_number="DM2")
    _pending(db_session, alpha, date="2025-03-20", flight_number="DM3")
    _pending(db_session, tenants["principals"]["bravo_tech"], date="2025-03-20")

    everything = services.list_temporary(db_session, alpha)
    one_day = services.list_temporary(db_session, alpha, date(2025, 3, 20))

    assert [r.date.day for r in everything] == [20, 20, 18]
    assert sorted(r.flight_number for r in one_day) == ["DM2", "DM3"]


def test_complete_requires_fleet_and_service(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    record = _pending(db_session, tech)

    with pytest.raises(ValidationError) as excinfo:
        services.complete_flight(db_session, storage, tech, record.id, _completion(service=""))

    assert excinfo.value.field == "service"
    assert services.get_record(db_session, tech, record.id).is_temporary is True


def test_complete_keeps_switched_on_sections_and_replaces_attachments(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    record = _pending(db_session, tech)
    attachments.store_attachments(
        db_session,
        storage,
        record,
        model=models.FlightRecordAttachment,
        parent_field="flight_record_id",
        folder=attachments.FLIGHT_RECORDS_FOLDER,
        company_id=tech.company_id,
        uploaded_by=tech.user_id,
        files=[make_file("old.pdf", b"old")],
    )
    db_session.refresh(record)
    old_key = record.attachments[0].file_key

    completed, results = services.complete_flight(
        db_session,
        storage,
        tech,
        record.id,
        _completion(
            has_defect=True,
            discrepancy_note="Hydraulic leak",
            has_time=False,
            block_time="01:10",
            has_comment=False,
            comment="ignored",
        ),
        files=[make_file("logpage.jpg", b"jpg", "image/jpeg")],
    )

    assert completed.is_temporary is False
    assert (completed.fleet, completed.service) == ("B737-8", "Transit")
    assert completed.discrepancy_note == "Hydraulic leak"
    assert completed.block_time is None
    assert completed.comment is None
    assert [a.file_name for a in completed.attachments] == ["logpage.jpg"]
    assert results == [{"file_key": old_key, "success": True, "error": None}]
    assert storage.download(old_key) is None
    assert services.list_temporary(db_session, tech) == []
    assert services.list_records(db_session, tech)["pagination"]["total_count"] == 1


def test_complete_drops_defect_fields_when_no_defect(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    record = _pending(db_session, tech)

    completed, results = services.complete_flight(
        db_session,
        storage,
        tech,
        record.id,
        _completion(has_defect=False, log_page_no="LP-9", has_time=True, block_time="01:10"),
    )

    assert completed.log_page_no is None
    assert completed.block_time == "01:10"
    assert results == []


def test_complete_and_delete_only_reach_pending_flights_of_own_tenant(db_session, tenants, storage):
    alpha = tenants["principals"]["alpha_admin"]
    bravo = tenants["principals"]["bravo_admin"]
    regular = _completed(db_session, storage, alpha)
    theirs = _pending(db_session, bravo)

    with pytest.raises(NotFound):
        services.complete_flight(db_session, storage, alpha, regular.id, _completion())
    with pytest.raises(NotFound):
        services.delete_temporary(db_session, storage, alpha, regular.id)
    with pytest.raises(NotFound):
        services.delete_temporary(db_session, storage, alpha, theirs.id)

    assert services.delete_temporary(db_session, storage, bravo, theirs.id) == []
    assert db_session.query(models.FlightRecord).count() == 1


def test_pending_metrics(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    utc = timezone.utc
    _pending(db_session, tech, created_at=datetime(2025, 3, 17, 10, 0, tzinfo=utc), date="2025-03-19", flight_number="A1")
    _pending(db_session, tech, created_at=datetime(2025, 3, 14, 9, 0, tzinfo=utc), date="2025-03-15", flight_number="B1")
    _pending(
        db_session, tech, created_at=datetime(2025, 3, 19, 8, 0, tzinfo=utc),
        date="2025-03-22", station="PUJ", airline="JetBlue", flight_number="C1",
    )
    _pending(
        db_session, tech, created_at=datetime(2025, 3, 18, 12, 0, tzinfo=utc),
        date="2025-04-10", airline="Copa", flight_number="D1",
    )
    _pending(db_session, tenants["principals"]["bravo_tech"])
    _completed(db_session, storage, tech)

    metrics = services.pending_metrics(db_session, tech, now=NOW)

    assert metrics["total_pending"] == 4
    assert metrics["todays_pending"] == 1
    assert metrics["overdue_pending"] == 1
    assert metrics["upcoming_pending"] == 2
    assert metrics["this_week_pending"] == 2
    assert metrics["average_age"] == 2
    assert metrics["oldest_pending"] == 5
    assert metrics["unique_stations"] == 2
    assert metrics["unique_airlines"] == 3
    assert metrics["top_stations"][0] == {"value": "SDQ", "count": 3}
    assert [(r.flight_number, days) for r, days in metrics["recent_pending_flights"]] == [
        ("C1", 0),
        ("D1", 1),
        ("A1", 2),
        ("B1", 5),
    ]
    assert metrics["current_date"] == "2025-03-19"


def test_pending_metrics_on_empty_tenant(db_session, tenants):
    metrics = services.pending_metrics(db_session, tenants["principals"]["alpha_tech"], now=NOW)

    assert metrics["total_pending"] == 0
    assert metrics["average_age"] == 0
    assert metrics["oldest_pending"] == 0
    assert metrics["recent_pending_flights"] == []


def test_monthly_count_covers_completed_flights_of_the_month(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    _completed(db_session, storage, tech, date="2025-03-02")
    _completed(db_session, storage, tech, date="2025-03-19")
    _completed(db_session, storage, tech, date="2025-02-10")
    _pending(db_session, tech)

    assert services.monthly_count(db_session, tech, now=NOW) == {"count": 2, "month": "March 2025"}


def test_pending_delete_permission_is_off_by_default_for_technicians(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]
    admin = tenants["principals"]["alpha_admin"]

    assert router.can_add_temporal(principal=tech, db=db_session) is tech
    with pytest.raises(Forbidden):
        router.can_delete_pending(principal=tech, db=db_session)
    assert router.can_delete_pending(principal=admin, db=db_session) is admin


def test_pending_routes_are_matched_before_record_ids():
    paths = [route.path for route in router.router.routes]
    record_route = paths.index("/flight-records/{record_id}")

    for path in (
        "/flight-records/temporal",
        "/flight-records/pending-metrics",
        "/flight-records/monthly-count",
        "/flight-records/stations-count",
    ):
        assert paths.index(path) < record_route
