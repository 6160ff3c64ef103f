from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from zonecrm.authz.capabilities import CapabilityCode
from zonecrm.authz.context import PermissionContext
from zonecrm.container import Services, get_db, get_permission_context, get_services
from zonecrm.context import RequestOrigin, get_request_origin
from zonecrm.zones.schemas import MembershipGrant, MembershipRead, ZoneCreate, ZoneRead, ZoneUpdate


zones_router = APIRouter(prefix="/api/zones", tags=["zones"])


def _require_member_management(
    services: Services,
    ctx: PermissionContext,
    zone_id: int,
    origin: RequestOrigin,
) -> None:
    engine = services.engine
    manages_zone = engine.has_capability_in_zone(ctx.user_id, CapabilityCode.CORE_USER_MANAGE, zone_id)
    if not manages_zone and engine.is_super_admin(ctx.user_id):
        services.sink.log_activity(
            user_id=ctx.user_id,
            zone_id=zone_id,
            entity_type="zone_membership",
            entity_id=zone_id,
            action="super_admin_bypass",
            new_values={"capability": CapabilityCode.CORE_USER_MANAGE.value},
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
        )
        return
    services.guard.require_action(
        ctx.user_id,
        "manage",
        "core.user",
        zone_id,
        entity_id=zone_id,
        origin=origin,
    )


@zones_router.post("", response_model=ZoneRead, status_code=status.HTTP_201_CREATED)
def create_zone(
    dto: ZoneCreate,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> ZoneRead:
    origin = get_request_origin(request)
    services.guard.require_capability(
        ctx.user_id,
        CapabilityCode.CORE_ZONE_MANAGE,
        entity_type="zone",
        zone_id=dto.parent_id,
        origin=origin,
    )
    return services.zone_admin.create_zone(db, dto, actor_id=ctx.user_id, origin=origin)


@zones_router.patch("/{zone_id}", response_model=ZoneRead)
def update_zone(
    zone_id: int,
    dto: ZoneUpdate,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> ZoneRead:
    origin = get_request_origin(request)
    services.guard.require_capability(
        ctx.user_id,
        CapabilityCode.CORE_ZONE_MANAGE,
        entity_type="zone",
        entity_id=zone_id,
        zone_id=zone_id,
        origin=origin,
    )
    return services.zone_admin.update_zone(db, zone_id, dto, actor_id=ctx.user_id, origin=origin)


@zones_router.get("", response_model=list[ZoneRead])
def list_zones(
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> list[ZoneRead]:
    return services.zone_admin.list_zones(db, ctx.accessible_zones)


@zones_router.get("/{zone_id}/children", response_model=list[ZoneRead])
def list_children(
    zone_id: int,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> list[ZoneRead]:
    services.guard.require_entity_access(
        ctx.user_id,
        zone_id,
        entity_type="zone",
        entity_id=zone_id,
        origin=get_request_origin(request),
    )
    return services.zone_admin.list_children(db, zone_id)


@zones_router.get("/{zone_id}/members", response_model=list[MembershipRead])
def list_members(
    zone_id: int,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> list[MembershipRead]:
    services.guard.require_entity_access(
        ctx.user_id,
        zone_id,
        entity_type="zone_membership",
        entity_id=zone_id,
        origin=get_request_origin(request),
    )
    return services.zone_admin.list_members(db, zone_id)


@zones_router.post("/{zone_id}/members", response_model=MembershipRead, status_code=status.HTTP_201_CREATED)
def grant_membership(
    zone_id: int,
    dto: MembershipGrant,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> MembershipRead:
    origin = get_request_origin(request)
    _require_member_management(services, ctx, zone_id, origin)
    services.guard.require_role_management(ctx.user_id, zone_id, dto.user_id, role=dto.role, origin=origin)
    return services.zone_admin.grant_membership(db, zone_id, dto, actor_id=ctx.user_id, origin=origin)


@zones_router.delete("/{zone_id}/members/{user_id}", status_code=status.HTTP_200_OK)
def revoke_membership(
    zone_id: int,
    user_id: int,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> None:
    origin = get_request_origin(request)
    _require_member_management(services, ctx, zone_id, origin)
    services.guard.require_role_management(ctx.user_id, zone_id, user_id, origin=origin)
    services.zone_admin.revoke_membership(db, zone_id, user_id, actor_id=ctx.user_id, origin=origin)
