from __future__ import annotations

from mrodb.apps.activity import models, services
from mrodb.apps.activity.models import ActivityAction
from mrodb.apps.activity.services import RequestInfo
from mrodb.tests.helpers import make_request, make_user


def _log(db_session, principal, action=ActivityAction.ADDED_FLIGHT_RECORD, **kwargs):
    return services.log_activity(
        db_session,
        principal,
        action=action,
        resource_type=kwargs.pop("resource_type", "flight_record"),
        resource_id=kwargs.pop("resource_id", "r-1"),
        **kwargs,
    )


def test_request_info_prefers_first_forwarded_address():
    request = make_request(
        [
            (b"x-forwarded-for", b"203.0.113.7, 10.0.0.1"),
            (b"x-real-ip", b"10.0.0.2"),
            (b"user-agent", b"pytest-agent"),
        ]
    )

    info = RequestInfo.from_request(request)

    assert info.ip_address == "203.0.113.7"
    assert info.user_agent == "pytest-agent"


def test_request_info_defaults_to_unknown():
    info = RequestInfo.from_request(make_request([(b"accept", b"application/json")]))

    assert info == RequestInfo("unknown", "unknown")
    assert RequestInfo.from_request(None) == RequestInfo()


def test_log_activity_stores_tenant_user_and_metadata(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]

    entry = _log(db_session, tech, metadata={"station": "SDQ"}, request_info=RequestInfo("198.51.100.4", "ua"))

    assert entry.company_id == tech.company_id
    assert entry.user_id == tech.user_id
    assert entry.action == "ADDED_FLIGHT_RECORD"
    assert entry.metadata_json == {"station": "SDQ"}
    assert entry.ip_address == "198.51.100.4"


def test_log_activity_failure_is_swallowed(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]

    # An object the JSON column cannot serialise makes the insert fail.
    entry = _log(db_session, tech, metadata={"bad": object()})

    assert entry is None
    assert db_session.query(models.UserActivity).count() == 0
    assert _log(db_session, tech) is not None


def test_listing_is_self_scoped_for_non_admins(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]
    admin = tenants["principals"]["alpha_admin"]
    _log(db_session, tech)
    _log(db_session, admin, action=ActivityAction.DELETED_FLIGHT_RECORD)
    _log(db_session, tenants["principals"]["bravo_admin"])

    mine = services.list_activities(db_session, tech)
    company = services.list_activities(db_session, admin)

    assert [a.user_id for a in mine["items"]] == [tech.user_id]
    assert {a.user_id for a in company["items"]} == {tech.user_id, admin.user_id}


def test_company_listing_filters_by_user_and_action_substring(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]
    admin = tenants["principals"]["alpha_admin"]
    _log(db_session, tech)
    _log(db_session, tech, action=ActivityAction.USED_STOCK_QUANTITY, resource_type="stock_item")
    _log(db_session, admin, action=ActivityAction.DELETED_FLIGHT_RECORD)

    by_user = services.list_activities(db_session, admin, user_id=tech.user_id, self_scoped=False)
    deletes = services.list_activities(db_session, admin, action="deleted", self_scoped=False)
    stock = services.list_activities(db_session, admin, resource_type="stock_item", self_scoped=False)

    assert by_user["pagination"]["total_count"] == 2
    assert [a.action for a in deletes["items"]] == ["DELETED_FLIGHT_RECORD"]
    assert [a.action for a in stock["items"]] == ["USED_STOCK_QUANTITY"]


def test_users_with_activities_lists_only_active_company_users(db_session, tenants):
    principals = tenants["principals"]
    _log(db_session, principals["alpha_tech"])
    _log(db_session, principals["alpha_tech"], action=ActivityAction.LOGGED_IN)
    _log(db_session, principals["alpha_admin"])
    _log(db_session, principals["bravo_tech"])
    make_user(db_session, tenants["alpha"], "quiet_one")

    rows = services.users_with_activities(db_session, principals["alpha_admin"])

    assert [(user.username, count) for user, count in rows] == [("alpha_admin", 1), ("alpha_tech", 2)]
