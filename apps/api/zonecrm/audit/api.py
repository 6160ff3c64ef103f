from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from zonecrm.audit.schemas import AuditRead, AuditVerifyRead
from zonecrm.authz.context import PermissionContext
from zonecrm.authz.decision import SUPER_ADMIN_REASON, ZONE_ADMIN_REASON, Decision, DenialKind
from zonecrm.container import Services, get_permission_context, get_services
from zonecrm.context import get_request_origin


audit_router = APIRouter(prefix="/api/audit", tags=["audit"])


def _deny_unless(
    allowed: bool,
    reason: str,
    *,
    request: Request,
    ctx: PermissionContext,
    services: Services,
    zone_id: int | None = None,
    entity_id: int | str | None = None,
) -> None:
    decision = Decision.allow() if allowed else Decision.deny(DenialKind.ROLE_REQUIRED, reason)
    services.guard.enforce(
        decision,
        user_id=ctx.user_id,
        zone_id=zone_id,
        entity_type="audit_log",
        entity_id=entity_id,
        origin=get_request_origin(request),
    )


def _require_super_admin(
    request: Request,
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> PermissionContext:
    _deny_unless(
        services.engine.is_super_admin(ctx.user_id),
        SUPER_ADMIN_REASON,
        request=request,
        ctx=ctx,
        services=services,
    )
    return ctx


@audit_router.get("/entities/{entity_type}/{entity_id}", response_model=list[AuditRead])
def entity_logs(
    entity_type: str,
    entity_id: str,
    limit: int = Query(default=50),
    _ctx: PermissionContext = Depends(_require_super_admin),
    services: Services = Depends(get_services),
) -> list[AuditRead]:
    return services.sink.entity_logs(entity_type, entity_id, limit=limit)


@audit_router.get("/users/{user_id}", response_model=list[AuditRead])
def user_actions(
    user_id: int,
    request: Request,
    limit: int = Query(default=50),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> list[AuditRead]:
    _deny_unless(
        user_id == ctx.user_id or services.engine.is_super_admin(ctx.user_id),
        SUPER_ADMIN_REASON,
        request=request,
        ctx=ctx,
        services=services,
        entity_id=user_id,
    )
    return services.sink.user_actions(user_id, limit=limit)


@audit_router.get("/zones/{zone_id}", response_model=list[AuditRead])
def zone_logs(
    zone_id: int,
    request: Request,
    limit: int = Query(default=100),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> list[AuditRead]:
    engine = services.engine
    _deny_unless(
        engine.is_zone_admin(ctx.user_id, zone_id) or engine.is_super_admin(ctx.user_id),
        ZONE_ADMIN_REASON,
        request=request,
        ctx=ctx,
        services=services,
        zone_id=zone_id,
        entity_id=zone_id,
    )
    return services.sink.zone_logs(zone_id, limit=limit)


@audit_router.get("/denials", response_model=list[AuditRead])
def access_denials(
    from_date: datetime | None = Query(default=None, alias="from"),
    to_date: datetime | None = Query(default=None, alias="to"),
    limit: int = Query(default=100),
    _ctx: PermissionContext = Depends(_require_super_admin),
    services: Services = Depends(get_services),
) -> list[AuditRead]:
    if from_date is not None and to_date is not None and from_date > to_date:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="'from' must not be after 'to'")
    return services.sink.access_denials(from_date, to_date, limit=limit)


@audit_router.get("/{entry_id}/verify", response_model=AuditVerifyRead)
def verify_entry(
    entry_id: int,
    _ctx: PermissionContext = Depends(_require_super_admin),
    services: Services = Depends(get_services),
) -> AuditVerifyRead:
    valid = services.sink.verify(entry_id)
    if valid is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="audit entry not found")
    return AuditVerifyRead(id=entry_id, valid=valid)
