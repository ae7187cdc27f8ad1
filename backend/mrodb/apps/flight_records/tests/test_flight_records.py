from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mrodb.apps.flight_records import models, router, services
from mrodb.apps.flight_records.schemas import FlightRecordInput
from mrodb.errors import ExternalServiceError, Forbidden, NotFound, ValidationError
from mrodb.tests.helpers import RecordingStorage, make_file


def _payload(**overrides) -> FlightRecordInput:
    values = {
        "date": "2025-03-19",
        "airline": "Arajet",
        "fleet": "B737-8",
        "flight_number": "DM101",
        "tail": "HI1026",
        "station": "sdq",
        "service": "Transit",
    }
    values.update(overrides)
    return FlightRecordInput(**values)


def _create(db_session, storage, principal, files=(), **overrides):
    return services.create_record(db_session, storage, principal, _payload(**overrides), files)


def test_create_pins_date_to_noon_and_stores_files(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]

    record = _create(db_session, storage, tech, [make_file("logpage.jpg", b"jpg", "image/jpeg")])

    assert record.date.hour == 12
    assert record.station == "SDQ"
    assert record.created_by == tech.user_id
    assert len(record.attachments) == 1
    assert record.attachments[0].file_key.startswith(f"flight-records/{tenants['alpha'].id}/{record.id}/")


def test_missing_station_is_rejected(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]

    with pytest.raises(ValidationError) as excinfo:
        _create(db_session, storage, tech, station="")

    assert excinfo.value.field == "station"
    assert db_session.query(models.FlightRecord).count() == 0


def test_upload_failure_removes_the_record(db_session, tenants, failing_upload_storage):
    tech = tenants["principals"]["alpha_tech"]

    with pytest.raises(ExternalServiceError):
        _create(db_session, failing_upload_storage, tech, [make_file()])

    assert db_session.query(models.FlightRecord).count() == 0


def test_update_removes_selected_attachments_and_adds_new_ones(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    record = _create(db_session, storage, tech, [make_file("a.pdf", b"a"), make_file("b.pdf", b"b")])
    dropped = next(a for a in record.attachments if a.file_name == "a.pdf")
    dropped_key = dropped.file_key

    updated, results = services.update_record(
        db_session,
        storage,
        tech,
        record.id,
        _payload(has_defect=True, discrepancy_note="Hydraulic leak"),
        deleted_attachment_ids=[dropped.id, "not-an-attachment"],
        files=[make_file("c.pdf", b"c")],
    )

    assert updated.has_defect is True
    assert sorted(a.file_name for a in updated.attachments) == ["b.pdf", "c.pdf"]
    assert results == [{"file_key": dropped_key, "success": True, "error": None}]
    assert storage.download(dropped_key) is None
    assert db_session.query(models.FlightRecordAttachment).count() == 2


def test_delete_reports_per_file_results_even_when_a_blob_fails(db_session, tenants, tmp_path):
    storage = RecordingStorage(tmp_path / "blobs", fail_keys_containing="-broken.pdf")
    tech = tenants["principals"]["alpha_tech"]
    record = _create(db_session, storage, tech, [make_file("good.pdf", b"1"), make_file("broken.pdf", b"2")])

    results = services.delete_record(db_session, storage, tech, record.id)

    assert sorted(r["success"] for r in results) == [False, True]
    assert db_session.query(models.FlightRecord).count() == 0
    assert db_session.query(models.FlightRecordAttachment).count() == 0


def test_bulk_delete_only_touches_own_tenant(db_session, tenants, storage):
    alpha = tenants["principals"]["alpha_admin"]
    bravo = tenants["principals"]["bravo_admin"]
    mine = [_create(db_session, storage, alpha).id for _ in range(2)]
    theirs = _create(db_session, storage, bravo).id

    deleted, results = services.bulk_delete(db_session, storage, alpha, mine + [theirs])

    assert deleted == 2
    assert results == []
    assert services.get_record(db_session, bravo, theirs).id == theirs
    assert db_session.query(models.FlightRecord).count() == 1


def test_bulk_delete_rejects_empty_and_foreign_only_lists(db_session, tenants, storage):
    alpha = tenants["principals"]["alpha_admin"]
    bravo = tenants["principals"]["bravo_admin"]
    theirs = _create(db_session, storage, bravo).id

    with pytest.raises(ValidationError):
        services.bulk_delete(db_session, storage, alpha, [])
    with pytest.raises(NotFound):
        services.bulk_delete(db_session, storage, alpha, [theirs])


def test_list_filters_and_orders_by_date(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    _create(db_session, storage, tech, date="2025-03-01", station="PUJ")
    _create(db_session, storage, tech, date="2025-03-05", station="SDQ", has_defect=True)
    _create(db_session, storage, tech, date="2025-03-09", station="SDQ")
    _create(db_session, storage, tenants["principals"]["bravo_tech"], date="2025-03-10", station="SDQ")

    all_sdq = services.list_records(db_session, tech, stations=["SDQ"])
    defects = services.list_records(db_session, tech, has_defect=True)
    no_filter = services.list_records(db_session, tech, stations=[])

    assert [r.date.day for r in all_sdq["items"]] == [9, 5]
    assert [r.date.day for r in defects["items"]] == [5]
    assert no_filter["pagination"]["total_count"] == 3


def test_dashboard_metrics(db_session, tenants, storage):
    tech = tenants["principals"]["alpha_tech"]
    for day, station, defect in [
        ("2025-03-19", "SDQ", True),
        ("2025-03-16", "SDQ", False),
        ("2025-03-02", "PUJ", False),
        ("2025-02-10", "SDQ", True),
        ("2025-01-05", "STI", False),
        ("2024-12-20", "PUJ", False),
    ]:
        _create(db_session, storage, tech, date=day, station=station, has_defect=defect)
    _create(db_session, storage, tenants["principals"]["bravo_tech"], date="2025-03-19")

    now = datetime(2025, 3, 19, 15, 0, tzinfo=timezone.utc)
    metrics = services.dashboard_metrics(db_session, tech, now=now)

    assert metrics["total_flights"] == 6
    assert metrics["flights_this_month"] == 3
    assert metrics["flights_this_week"] == 2
    assert metrics["flights_today"] == 1
    assert metrics["flights_year_to_date"] == 5
    assert metrics["flights_last_30_days"] == 3
    assert metrics["flights_previous_month"] == 1
    assert metrics["flights_two_months_ago"] == 1
    assert metrics["flights_three_months_ago"] == 1
    assert metrics["defect_rate"] == 33.33
    assert metrics["monthly_defect_rate"] == 33.33
    assert metrics["previous_month_defect_rate"] == 100.0
    assert metrics["month_over_month_change"] == 200.0
    assert metrics["trend"] == "up"
    assert metrics["month_progress"] == 61.29
    assert (metrics["previous_month"], metrics["three_months_ago"]) == ("February", "December")
    assert metrics["unique_stations"] == 3
    assert metrics["top_stations"][0] == {"value": "SDQ", "count": 3}
    assert len(metrics["recent_flights"]) == 5
    assert metrics["recent_flights"][0].date.day == 19


def test_dashboard_on_empty_tenant_has_zero_rates(db_session, tenants):
    metrics = services.dashboard_metrics(db_session, tenants["principals"]["alpha_tech"])

    assert metrics["total_flights"] == 0
    assert metrics["defect_rate"] == 0.0
    assert metrics["trend"] == "stable"


def test_delete_permission_is_off_by_default_for_technicians(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]
    admin = tenants["principals"]["alpha_admin"]

    with pytest.raises(Forbidden):
        router.can_delete(principal=tech, db=db_session)
    assert router.can_view(principal=tech, db=db_session) is tech
    assert router.can_delete(principal=admin, db=db_session) is admin


def test_parse_id_list_rejects_non_lists():
    assert router.parse_id_list('["a", "b"]', "ids") == ["a", "b"]
    assert router.parse_id_list(None, "ids") == []
    with pytest.raises(ValidationError):
        router.parse_id_list('{"a": 1}', "ids")
