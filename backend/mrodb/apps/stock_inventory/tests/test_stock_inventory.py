from __future__ import annotations

from datetime import datetime, timedelta, timezone
from io import BytesIO

import pytest
from openpyxl import load_workbook

from mrodb.apps.activity.models import ActivityAction, UserActivity
from mrodb.apps.reports.renderer import render
from mrodb.apps.stock_inventory import models, router, services
from mrodb.apps.stock_inventory.schemas import StockItemInput, UseQuantityRequest
from mrodb.errors import ExternalServiceError, Forbidden, NotFound, ValidationError
from mrodb.tests.helpers import make_file

NOW = datetime(2025, 3, 19, 15, 0, tzinfo=timezone.utc)


def _payload(**overrides) -> StockItemInput:
    values = {
        "part_no": "MS20995C32",
        "serial_no": None,
        "description": "Safety wire",
        "quantity": 10,
        "type": "Consumable",
        "location": "Shelf A",
        "station": "sdq",
        "owner": "Arajet",
        "incoming_date": "2025-02-01",
    }
    values.update(overrides)
    return StockItemInput(**values)


def _create(db_session, storage, principal, files=(), **overrides):
    return services.create_item(db_session, storage, principal, _payload(**overrides), files)


def test_create_normalises_values_and_stores_files(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]

    item = _create(
        db_session,
        storage,
        admin,
        [make_file("8130.pdf")],
        has_expire_date=True,
        expire_date="2026-01-31",
        has_inspection=True,
        inspection_result="passed",
    )

    assert item.station == "SDQ"
    assert item.incoming_date.hour == 12
    assert item.expire_date.hour == 12
    assert item.inspection_result == "Passed"
    assert item.attachments[0].file_key.startswith(f"stock-inventory/{tenants['alpha'].id}/{item.id}/")


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"part_no": " "}, "part_no"),
        ({"quantity": None}, "quantity"),
        ({"quantity": -1}, "quantity"),
        ({"has_expire_date": True}, "expire_date"),
        ({"has_inspection": True}, "inspection_result"),
        ({"has_inspection": True, "inspection_result": "Maybe"}, "inspection_result"),
    ],
)
def test_create_validation_names_the_field(db_session, tenants, storage, overrides, field):
    admin = tenants["principals"]["alpha_admin"]

    with pytest.raises(ValidationError) as excinfo:
        _create(db_session, storage, admin, **overrides)

    assert excinfo.value.field == field
    assert db_session.query(models.StockItem).count() == 0


def test_zero_quantity_is_a_valid_stock_line(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]

    assert _create(db_session, storage, admin, quantity=0).quantity == 0


def test_upload_failure_removes_the_item(db_session, tenants, failing_upload_storage):
    admin = tenants["principals"]["alpha_admin"]

    with pytest.raises(ExternalServiceError):
        _create(db_session, failing_upload_storage, admin, [make_file()])

    assert db_session.query(models.StockItem).count() == 0


def test_use_quantity_decrements_and_records_usage(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]
    tech = tenants["principals"]["alpha_tech"]
    item = _create(db_session, storage, admin)

    updated, usage = services.use_quantity(
        db_session, tech, item.id, UseQuantityRequest(quantity_used=4, purpose="HI1026 wheel change"), now=NOW
    )

    assert updated.quantity == 6
    assert usage.quantity_used == 4
    assert usage.remaining_quantity == 6
    assert usage.used_by == tech.user_id
    assert usage.used_by_name == "Alpha_tech Tester"
    assert usage.purpose == "HI1026 wheel change"
    actions = [a.action for a in db_session.query(UserActivity).all()]
    assert ActivityAction.USED_STOCK_QUANTITY.value in actions


@pytest.mark.parametrize("requested", [0, -2])
def test_use_quantity_requires_a_positive_amount(db_session, tenants, storage, requested):
    admin = tenants["principals"]["alpha_admin"]
    item = _create(db_session, storage, admin)

    with pytest.raises(ValidationError):
        services.use_quantity(db_session, admin, item.id, UseQuantityRequest(quantity_used=requested))

    assert db_session.query(models.StockUsage).count() == 0


def test_use_quantity_cannot_exceed_stock(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]
    item = _create(db_session, storage, admin, quantity=3)

    with pytest.raises(ValidationError) as excinfo:
        services.use_quantity(db_session, admin, item.id, UseQuantityRequest(quantity_used=5))

    assert excinfo.value.message == "Insufficient quantity. Available: 3, Requested: 5"
    assert services.get_item(db_session, admin, item.id).quantity == 3
    assert db_session.query(models.StockUsage).count() == 0


def test_usage_history_is_newest_first_and_tenant_scoped(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]
    item = _create(db_session, storage, admin)
    services.use_quantity(db_session, admin, item.id, UseQuantityRequest(quantity_used=1), now=NOW)
    services.use_quantity(
        db_session, admin, item.id, UseQuantityRequest(quantity_used=2), now=NOW + timedelta(hours=1)
    )

    history = services.usage_history(db_session, admin, item.id)

    assert [u.quantity_used for u in history] == [2, 1]
    assert [u.remaining_quantity for u in history] == [7, 9]
    with pytest.raises(NotFound):
        services.usage_history(db_session, tenants["principals"]["bravo_admin"], item.id)


def test_delete_removes_usages_attachments_and_blobs(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]
    item = _create(db_session, storage, admin, [make_file()])
    key = item.attachments[0].file_key
    services.use_quantity(db_session, admin, item.id, UseQuantityRequest(quantity_used=1), now=NOW)

    results = services.delete_item(db_session, storage, admin, item.id)

    assert results == [{"file_key": key, "success": True, "error": None}]
    assert db_session.query(models.StockItem).count() == 0
    assert db_session.query(models.StockUsage).count() == 0
    assert db_session.query(models.StockItemAttachment).count() == 0


def test_bulk_delete_only_touches_own_tenant(db_session, tenants, storage):
    alpha = tenants["principals"]["alpha_admin"]
    bravo = tenants["principals"]["bravo_admin"]
    mine = [_create(db_session, storage, alpha, part_no=f"P-{n}") for n in range(2)]
    theirs = _create(db_session, storage, bravo)

    count, _ = services.bulk_delete(db_session, storage, alpha, [i.id for i in mine] + [theirs.id])

    assert count == 2
    assert services.get_item(db_session, bravo, theirs.id).part_no == "MS20995C32"
    with pytest.raises(NotFound):
        services.bulk_delete(db_session, storage, alpha, [theirs.id])
    with pytest.raises(ValidationError):
        services.bulk_delete(db_session, storage, alpha, [])


def test_search_matches_custom_companions(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]
    _create(db_session, storage, admin, part_no="A-1", location="Shelf A")
    _create(db_session, storage, admin, part_no="B-2", location="Other", custom_location="Hangar cage")
    _create(
        db_session,
        storage,
        admin,
        part_no="C-3",
        location="Shelf C",
        has_inspection=True,
        inspection_result="Failed",
    )
    _create(db_session, storage, tenants["principals"]["bravo_admin"], part_no="Z-9", custom_location="Hangar cage")

    by_custom = services.search_items(db_session, admin, services.StockFilters(location="hangar"))
    inspected = services.search_items(
        db_session, admin, services.StockFilters(has_inspection=True, inspection_result="failed")
    )
    everything = services.search_items(db_session, admin, services.StockFilters(has_inspection=False))

    assert [i.part_no for i in by_custom["items"]] == ["B-2"]
    assert [i.part_no for i in inspected["items"]] == ["C-3"]
    assert everything["pagination"]["total_count"] == 3
    assert [i.part_no for i in everything["items"]] == ["C-3", "B-2", "A-1"]


@pytest.mark.parametrize(
    "expire, expected",
    [
        (datetime(2025, 3, 19, 12, 0, tzinfo=timezone.utc), 0),
        (datetime(2025, 3, 20, 12, 0, tzinfo=timezone.utc), 1),
        (datetime(2025, 3, 18, 12, 0, tzinfo=timezone.utc), -1),
        (datetime(2025, 4, 18, 15, 0, tzinfo=timezone.utc), 30),
    ],
)
def test_days_left_rounds_up(expire, expected):
    assert services.days_left(expire, NOW) == expected


def test_expiry_status_classifies_and_skips_failed_inspections(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]
    for part_no, expire in (
        ("EXP-OLD", "2025-03-10"),
        ("EXP-TODAY", "2025-03-19"),
        ("SOON-13", "2025-04-01"),
        ("SOON-30", "2025-04-18"),
        ("LATER", "2025-04-19"),
    ):
        _create(db_session, storage, admin, part_no=part_no, has_expire_date=True, expire_date=expire)
    _create(
        db_session,
        storage,
        admin,
        part_no="REJECTED",
        has_expire_date=True,
        expire_date="2025-03-01",
        has_inspection=True,
        inspection_result="Failed",
    )
    _create(db_session, storage, admin, part_no="NO-EXPIRY")

    status = services.expiry_status(db_session, admin, NOW)

    assert [e.part_no for e in status.expired] == ["EXP-OLD", "EXP-TODAY"]
    assert [e.part_no for e in status.expiring_soon] == ["SOON-13", "SOON-30"]
    assert [e.days_left for e in status.expiring_soon] == [13, 30]
    assert status.expired_count == 2
    assert status.expiring_soon_count == 2
    assert status.total_with_expiry == 6


def test_stock_report_renders_filtered_inventory(db_session, tenants, storage):
    admin = tenants["principals"]["alpha_admin"]
    _create(db_session, storage, admin, part_no="A-1", quantity=4, has_expire_date=True, expire_date="2025-03-01")
    _create(db_session, storage, admin, part_no="B-2", quantity=6, station="PUJ")

    report = services.stock_report(db_session, admin, services.StockFilters(), NOW)
    rendered = render(report, "excel")

    assert report.summary == {"Items": 2, "Total quantity": 10, "Expired": 1, "Expiring soon": 0}
    assert [row["Expiry Status"] for row in report.sections[0].rows] == ["Expired", ""]
    assert rendered.filename == "stock_inventory-report-2025-03-19.xlsx"
    workbook = load_workbook(BytesIO(rendered.content))
    assert "Items" in workbook.sheetnames


def test_permission_defaults_gate_add_and_delete(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]

    assert router.can_view(principal=tech, db=db_session) == tech
    assert router.can_report(principal=tech, db=db_session) == tech
    with pytest.raises(Forbidden):
        router.can_add(principal=tech, db=db_session)
    with pytest.raises(Forbidden):
        router.can_delete(principal=tech, db=db_session)
