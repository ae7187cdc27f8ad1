from __future__ import annotations

from datetime import timedelta

import pytest

from mrodb.apps.accounts import models, services
from mrodb.errors import Forbidden, NotFound, Unauthenticated, ValidationError
from mrodb.security import create_access_token, get_password_hash, resolve_principal, verify_password
from mrodb.apps.activity.models import ActivityAction
from mrodb.apps.activity.services import log_activity
from mrodb.tests.helpers import make_user


def test_argon2_hashes_verify_and_bad_hashes_do_not():
    hashed = get_password_hash("s3cret-pass")

    assert hashed.startswith("$argon2")
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong", hashed)
    assert not verify_password("s3cret-pass", "not-a-password-hash")


def test_authenticate_by_username_or_email(db_session, tenants):
    user = make_user(
        db_session, tenants["alpha"], "dispatcher", hashed_password=get_password_hash("s3cret-pass")
    )

    assert services.authenticate(db_session, "dispatcher", "s3cret-pass").id == user.id
    assert services.authenticate(db_session, "Dispatcher@Example.com", "s3cret-pass").id == user.id
    with pytest.raises(Unauthenticated):
        services.authenticate(db_session, "dispatcher", "wrong")


def test_inactive_user_cannot_log_in_or_use_a_token(db_session, tenants):
    user = make_user(db_session, tenants["alpha"], "retired", hashed_password=get_password_hash("pw"))
    token = create_access_token(data={"sub": user.id, "company_id": user.company_id})
    user.is_active = False
    db_session.commit()

    with pytest.raises(Unauthenticated):
        services.authenticate(db_session, "retired", "pw")
    with pytest.raises(Unauthenticated):
        resolve_principal(db_session, token)


def test_token_resolves_to_principal_with_tenant(db_session, tenants):
    user = tenants["users"]["alpha_tech"]
    token = create_access_token(data={"sub": user.id, "company_id": user.company_id})

    principal = resolve_principal(db_session, token)

    assert principal.user_id == user.id
    assert principal.company_id == tenants["alpha"].id
    assert principal.company_name == "ALPHA Aviation"
    assert not principal.is_admin


@pytest.mark.parametrize("token", [None, "", "garbage"])
def test_missing_or_malformed_tokens_fail_closed(db_session, token):
    with pytest.raises(Unauthenticated):
        resolve_principal(db_session, token)


def test_expired_token_is_rejected(db_session, tenants):
    user = tenants["users"]["alpha_tech"]
    token = create_access_token(data={"sub": user.id}, expires_delta=timedelta(minutes=-1))

    with pytest.raises(Unauthenticated):
        resolve_principal(db_session, token)


def test_permissions_row_is_created_with_defaults(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]

    row = services.get_permissions(db_session, tech)

    for flag, default in models.PERMISSION_DEFAULTS.items():
        assert getattr(row, flag) is default
    assert db_session.query(models.UserPermission).count() == 1


def test_non_admin_cannot_read_someone_elses_permissions(db_session, tenants):
    tech = tenants["principals"]["alpha_tech"]

    with pytest.raises(Forbidden):
        services.get_permissions(db_session, tech, tenants["users"]["alpha_admin"].id)


def test_admin_updates_flags_and_gets_the_diff(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    tech = tenants["users"]["alpha_tech"]

    row, changes = services.update_permissions(
        db_session, admin, tech.id, {"can_delete_flight_records": True, "can_view_flight_records": True}
    )

    assert row.can_delete_flight_records is True
    assert changes == {"can_delete_flight_records": {"old": False, "new": True}}
    services.ensure_permission(db_session, tenants["principals"]["alpha_tech"], "can_delete_flight_records")


def test_permission_updates_reject_self_foreign_and_unknown(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]

    with pytest.raises(Forbidden):
        services.update_permissions(db_session, admin, admin.user_id, {"can_add_stock_item": True})
    with pytest.raises(NotFound):
        services.update_permissions(
            db_session, admin, tenants["users"]["bravo_tech"].id, {"can_add_stock_item": True}
        )
    with pytest.raises(ValidationError):
        services.update_permissions(
            db_session, admin, tenants["users"]["alpha_tech"].id, {"can_launch_rockets": True}
        )
    with pytest.raises(Forbidden):
        services.update_permissions(
            db_session,
            tenants["principals"]["alpha_tech"],
            tenants["users"]["alpha_admin"].id,
            {"can_add_stock_item": True},
        )


def test_privilege_change_is_admin_only_and_never_self(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    tech = tenants["users"]["alpha_tech"]

    user, previous = services.change_privilege(db_session, admin, tech.id, models.Privilege.MANAGER)

    assert previous == "technician"
    assert user.privilege == models.Privilege.MANAGER
    with pytest.raises(Forbidden):
        services.change_privilege(db_session, admin, admin.user_id, models.Privilege.READER)
    with pytest.raises(Forbidden):
        services.change_privilege(
            db_session, tenants["principals"]["alpha_tech"], admin.user_id, models.Privilege.READER
        )


def test_company_users_are_tenant_scoped(db_session, tenants):
    users = services.list_company_users(db_session, tenants["principals"]["bravo_admin"])

    assert {u.username for u in users} == {"bravo_admin", "bravo_tech"}


def _log_for(db_session, principal, times: int) -> None:
    for _ in range(times):
        log_activity(
            db_session,
            principal,
            action=ActivityAction.ADDED_FLIGHT_RECORD,
            resource_type="flight_record",
            resource_id="r-1",
        )


def test_managed_users_are_admin_only_and_carry_activity_counts(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    _log_for(db_session, tenants["principals"]["alpha_tech"], 2)
    _log_for(db_session, tenants["principals"]["bravo_tech"], 1)

    rows = services.list_managed_users(db_session, admin)

    assert [(u.email, count) for u, count in rows] == [
        ("alpha_admin@example.com", 0),
        ("alpha_tech@example.com", 2),
    ]
    with pytest.raises(Forbidden):
        services.list_managed_users(db_session, tenants["principals"]["alpha_tech"])


def test_managed_user_detail_is_tenant_scoped(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    tech = tenants["users"]["alpha_tech"]

    user, permission, count = services.get_managed_user(db_session, admin, tech.id)

    assert user.id == tech.id
    assert permission.can_view_flight_records is True
    assert count == 0
    with pytest.raises(NotFound):
        services.get_managed_user(db_session, admin, tenants["users"]["bravo_tech"].id)


def test_deactivation_is_never_self_and_blocks_login(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    mechanic = make_user(
        db_session, tenants["alpha"], "line_mech", hashed_password=get_password_hash("Hangar-door-42")
    )

    with pytest.raises(Forbidden):
        services.deactivate_user(db_session, admin, admin.user_id)
    with pytest.raises(NotFound):
        services.deactivate_user(db_session, admin, tenants["users"]["bravo_tech"].id)
    with pytest.raises(Forbidden):
        services.deactivate_user(db_session, tenants["principals"]["alpha_tech"], mechanic.id)

    user = services.deactivate_user(db_session, admin, mechanic.id)

    assert user.is_active is False
    with pytest.raises(Unauthenticated):
        services.authenticate(db_session, "line_mech", "Hangar-door-42")


def test_password_reset_enforces_strength_and_scope(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    tech = tenants["users"]["alpha_tech"]

    with pytest.raises(ValidationError) as excinfo:
        services.reset_password(db_session, admin, tech.id, "short")
    assert excinfo.value.field == "new_password"
    with pytest.raises(ValidationError):
        services.reset_password(db_session, admin, tech.id, "alllowercaseletters")
    with pytest.raises(Forbidden):
        services.reset_password(db_session, admin, admin.user_id, "Brand-new-pass-1")
    with pytest.raises(NotFound):
        services.reset_password(db_session, admin, tenants["users"]["bravo_tech"].id, "Brand-new-pass-1")

    user = services.reset_password(db_session, admin, tech.id, "Brand-new-pass-1")

    assert verify_password("Brand-new-pass-1", user.hashed_password)
    assert services.authenticate(db_session, "alpha_tech", "Brand-new-pass-1").id == tech.id


def test_email_change_checks_domain_uniqueness_and_scope(db_session, tenants):
    admin = tenants["principals"]["alpha_admin"]
    tech = tenants["users"]["alpha_tech"]

    with pytest.raises(ValidationError) as excinfo:
        services.change_email(db_session, admin, tech.id, "tech@elsewhere.org")
    assert excinfo.value.field == "email"
    with pytest.raises(ValidationError):
        services.change_email(db_session, admin, tech.id, "alpha_admin@example.com")
    with pytest.raises(ValidationError):
        services.change_email(db_session, admin, tech.id, "bravo_tech@example.com")
    with pytest.raises(NotFound):
        services.change_email(db_session, admin, tenants["users"]["bravo_tech"].id, "new@example.com")
    with pytest.raises(Forbidden):
        services.change_email(db_session, tenants["principals"]["alpha_tech"], tech.id, "new@example.com")

    user, previous = services.change_email(db_session, admin, tech.id, "Line.Lead@Example.com")

    assert previous == "alpha_tech@example.com"
    assert user.email == "line.lead@example.com"
