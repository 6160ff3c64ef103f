from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient
from sqlalchemy import select, text
from sqlalchemy.orm import Session

from zonecrm.audit.models import AuditLog
from zonecrm.audit.schemas import AuditEntry
from zonecrm.authz.capabilities import RoleName
from zonecrm.container import Services


def test_zone_logs_require_zone_admin(
    client: TestClient,
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
    auth_headers: Callable,
) -> None:
    zone = make_zone()
    zone_admin = make_user()
    staff = make_user()
    add_member(zone_admin, zone, RoleName.ZONE_ADMIN)
    add_member(staff, zone, RoleName.STAFF)
    services.sink.log(AuditEntry(zone_id=zone.id, user_id=staff.id, entity_type="lead", entity_id=1, action="created"))

    allowed = client.get(f"/api/audit/zones/{zone.id}", headers=auth_headers(zone_admin.id))
    assert allowed.status_code == 200
    assert [row["action"] for row in allowed.json()] == ["created"]

    denied = client.get(f"/api/audit/zones/{zone.id}", headers=auth_headers(staff.id))
    assert denied.status_code == 403
    body = denied.json()
    assert body["code"] == "PERMISSION_DENIED"
    assert body["message"] == "Zone admin access required"
    assert body["details"] == {"kind": "role_required"}

    db_session.expire_all()
    denial = db_session.scalar(select(AuditLog).where(AuditLog.action == "denied"))
    assert denial is not None
    assert denial.entity_type == "audit_log"
    assert denial.zone_id == zone.id


def test_entity_history_requires_super_admin(
    client: TestClient,
    services: Services,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
    auth_headers: Callable,
) -> None:
    zone = make_zone()
    admin = make_user()
    zone_admin = make_user()
    add_member(admin, zone, RoleName.SUPER_ADMIN)
    add_member(zone_admin, zone, RoleName.ZONE_ADMIN)
    for action in ("created", "updated"):
        services.sink.log(AuditEntry(zone_id=zone.id, user_id=admin.id, entity_type="lead", entity_id=44, action=action))

    history = client.get("/api/audit/entities/lead/44", headers=auth_headers(admin.id))
    assert history.status_code == 200
    assert [row["action"] for row in history.json()] == ["updated", "created"]

    limited = client.get("/api/audit/entities/lead/44?limit=1", headers=auth_headers(admin.id))
    assert len(limited.json()) == 1

    denied = client.get("/api/audit/entities/lead/44", headers=auth_headers(zone_admin.id))
    assert denied.status_code == 403
    assert denied.json()["message"] == "Super admin access required"


def test_users_can_read_their_own_actions(
    client: TestClient,
    services: Services,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
    auth_headers: Callable,
) -> None:
    zone = make_zone()
    staff = make_user()
    other = make_user()
    add_member(staff, zone, RoleName.STAFF)
    add_member(other, zone, RoleName.STAFF)
    services.sink.log(AuditEntry(zone_id=zone.id, user_id=staff.id, entity_type="task", entity_id=2, action="created"))

    own = client.get(f"/api/audit/users/{staff.id}", headers=auth_headers(staff.id))
    assert own.status_code == 200
    assert len(own.json()) == 1

    foreign = client.get(f"/api/audit/users/{other.id}", headers=auth_headers(staff.id))
    assert foreign.status_code == 403


def test_denials_report_filters_by_date(
    client: TestClient,
    services: Services,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
    auth_headers: Callable,
) -> None:
    zone = make_zone()
    admin = make_user()
    add_member(admin, zone, RoleName.SUPER_ADMIN)
    moment = datetime(2026, 4, 1, 10, 0, tzinfo=timezone.utc)
    services.sink.log(
        AuditEntry(zone_id=zone.id, user_id=5, entity_type="lead", action="denied", created_at=moment - timedelta(days=3))
    )
    services.sink.log(AuditEntry(zone_id=zone.id, user_id=5, entity_type="lead", action="denied", created_at=moment))
    headers = auth_headers(admin.id)

    window = client.get(
        "/api/audit/denials",
        params={"from": "2026-03-31T00:00:00Z", "to": "2026-04-02T00:00:00Z"},
        headers=headers,
    )
    assert window.status_code == 200
    assert len(window.json()) == 1

    everything = client.get("/api/audit/denials", headers=headers)
    assert len(everything.json()) == 2

    inverted = client.get(
        "/api/audit/denials",
        params={"from": "2026-04-02T00:00:00Z", "to": "2026-03-31T00:00:00Z"},
        headers=headers,
    )
    assert inverted.status_code == 400


def test_verify_endpoint_detects_tampering(
    client: TestClient,
    services: Services,
    db_session: Session,
    make_user: Callable,
    make_zone: Callable,
    add_member: Callable,
    auth_headers: Callable,
) -> None:
    zone = make_zone()
    admin = make_user()
    add_member(admin, zone, RoleName.SUPER_ADMIN)
    entry_id = services.sink.log(
        AuditEntry(zone_id=zone.id, user_id=admin.id, entity_type="pricing", entity_id=1, action="updated")
    )
    headers = auth_headers(admin.id)

    intact = client.get(f"/api/audit/{entry_id}/verify", headers=headers)
    assert intact.status_code == 200
    assert intact.json() == {"id": entry_id, "valid": True}

    db_session.execute(text("UPDATE audit_logs SET user_id = 999 WHERE id = :id"), {"id": entry_id})
    db_session.commit()

    tampered = client.get(f"/api/audit/{entry_id}/verify", headers=headers)
    assert tampered.json() == {"id": entry_id, "valid": False}

    missing = client.get("/api/audit/424242/verify", headers=headers)
    assert missing.status_code == 404
