from __future__ import annotations

from collections.abc import Callable

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from zonecrm.audit.models import AuditLog
from zonecrm.authz.capabilities import CapabilityCode, RoleName
from zonecrm.authz.decision import ASSIGN_TARGET_REASON, CROSS_ZONE_REASON, Decision, DenialKind
from zonecrm.authz.errors import AuthorizationDenied
from zonecrm.container import Services
from zonecrm.context import RequestOrigin


def _denials(db_session: Session) -> list[AuditLog]:
    db_session.expire_all()
    return list(db_session.scalars(select(AuditLog).where(AuditLog.action == "denied")).all())


def test_denied_entity_access_is_audited_once_and_raised(
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
) -> None:
    home = make_zone("HOME")
    other = make_zone("OTHER")
    staff = make_user()
    add_member(staff, home, RoleName.STAFF)

    with pytest.raises(AuthorizationDenied) as excinfo:
        services.guard.require_entity_access(
            staff.id,
            other.id,
            entity_type="lead",
            entity_id=501,
            origin=RequestOrigin(ip_address="203.0.113.9", user_agent="agent/1.0"),
        )

    assert excinfo.value.code == "ZONE_MISMATCH"
    assert str(excinfo.value) == CROSS_ZONE_REASON

    rows = _denials(db_session)
    assert len(rows) == 1
    row = rows[0]
    assert row.zone_id == other.id
    assert row.user_id == staff.id
    assert row.entity_type == "lead"
    assert row.entity_id == "501"
    assert row.ip_address == "203.0.113.9"
    assert row.user_agent == "agent/1.0"
    assert row.new_values == {"zone_id": other.id, "kind": "zone_mismatch", "reason": CROSS_ZONE_REASON}


def test_allowed_checks_write_no_audit_rows(
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
) -> None:
    zone = make_zone()
    manager = make_user()
    colleague = make_user()
    add_member(manager, zone, RoleName.MANAGER)
    add_member(colleague, zone, RoleName.STAFF)

    guard = services.guard
    assert guard.require_entity_access(manager.id, zone.id, entity_type="lead").allowed
    assert guard.require_action(manager.id, "assign", "lead", zone.id).allowed
    assert guard.require_assignment(manager.id, colleague.id, zone.id, entity_type="lead", entity_id=3).allowed

    assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 0


def test_action_denial_uses_permission_denied_code(
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
) -> None:
    zone = make_zone()
    staff = make_user()
    add_member(staff, zone, RoleName.STAFF)

    with pytest.raises(AuthorizationDenied) as excinfo:
        services.guard.require_action(staff.id, "delete", "lead", zone.id, entity_id=42)

    assert excinfo.value.code == "PERMISSION_DENIED"
    assert excinfo.value.decision.reason == "Missing capability: lead.delete"

    rows = _denials(db_session)
    assert len(rows) == 1
    assert rows[0].new_values["capability"] == "lead.delete"
    assert rows[0].new_values["kind"] == "capability_missing"


def test_assignment_denial_records_target(
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
) -> None:
    zone_one = make_zone("ONE")
    zone_two = make_zone("TWO")
    manager = make_user()
    outsider = make_user()
    add_member(manager, zone_one, RoleName.MANAGER)
    add_member(outsider, zone_two, RoleName.STAFF)

    with pytest.raises(AuthorizationDenied) as excinfo:
        services.guard.require_assignment(
            manager.id,
            outsider.id,
            zone_one.id,
            entity_type="task",
            entity_id=8,
            capability=CapabilityCode.TASK_ASSIGN,
        )

    assert excinfo.value.decision.reason == ASSIGN_TARGET_REASON
    rows = _denials(db_session)
    assert len(rows) == 1
    assert rows[0].zone_id == zone_one.id
    assert rows[0].new_values["target_user_id"] == outsider.id
    assert rows[0].new_values["kind"] == "assignment_rejected"


def test_capability_denial_is_recorded_without_zone(
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
) -> None:
    zone = make_zone()
    viewer = make_user()
    add_member(viewer, zone, RoleName.VIEWER)

    with pytest.raises(AuthorizationDenied):
        services.guard.require_capability(viewer.id, CapabilityCode.CORE_ROLE_MANAGE, entity_type="role_capability")

    rows = _denials(db_session)
    assert len(rows) == 1
    assert rows[0].zone_id is None
    assert rows[0].new_values["reason"] == "Missing capability: core.role.manage"


def test_enforce_records_explicit_decisions(services: Services, db_session: Session) -> None:
    decision = Decision.deny(DenialKind.ROLE_REQUIRED, "Super admin access required")

    with pytest.raises(AuthorizationDenied) as excinfo:
        services.guard.enforce(decision, user_id=12, zone_id=None, entity_type="audit_log")

    assert excinfo.value.code == "PERMISSION_DENIED"
    rows = _denials(db_session)
    assert len(rows) == 1
    assert rows[0].new_values == {"kind": "role_required", "reason": "Super admin access required"}

    assert services.guard.enforce(Decision.allow(), user_id=12, zone_id=None, entity_type="audit_log").allowed
    assert len(_denials(db_session)) == 1


def test_each_denial_produces_exactly_one_row(
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
) -> None:
    home = make_zone("HOME")
    other = make_zone("OTHER")
    staff = make_user()
    add_member(staff, home, RoleName.STAFF)

    attempts = 4
    for index in range(attempts):
        with pytest.raises(AuthorizationDenied):
            services.guard.require_entity_access(staff.id, other.id, entity_type="lead", entity_id=index)

    rows = _denials(db_session)
    assert sorted(row.entity_id for row in rows) == [str(index) for index in range(attempts)]


def test_oversized_entity_type_still_raises_denial_with_audit_row(
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
) -> None:
    home = make_zone("HOME")
    other = make_zone("OTHER")
    staff = make_user()
    add_member(staff, home, RoleName.STAFF)

    with pytest.raises(AuthorizationDenied) as excinfo:
        services.guard.require_entity_access(staff.id, other.id, entity_type="x" * 65, entity_id="y" * 300)

    assert excinfo.value.code == "ZONE_MISMATCH"
    rows = _denials(db_session)
    assert len(rows) == 1
    assert rows[0].entity_type == "x" * 64
    assert rows[0].entity_id == "y" * 128
    assert services.sink.verify(rows[0].id) is True
