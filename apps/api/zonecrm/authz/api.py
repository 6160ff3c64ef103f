from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from zonecrm.authz.capabilities import CapabilityCode
from zonecrm.authz.context import PermissionContext
from zonecrm.authz.schemas import CapabilityRead, RoleCapabilityRead, RoleRead
from zonecrm.container import Services, get_db, get_permission_context, get_services
from zonecrm.context import get_request_origin


admin_router = APIRouter(prefix="/api/admin", tags=["admin.authz"])


def _require_role_manage(
    request: Request,
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> PermissionContext:
    services.guard.require_capability(
        ctx.user_id,
        CapabilityCode.CORE_ROLE_MANAGE,
        entity_type="role_capability",
        origin=get_request_origin(request),
    )
    return ctx


@admin_router.get("/roles", response_model=list[RoleRead])
def list_roles(
    db: Session = Depends(get_db),
    _ctx: PermissionContext = Depends(_require_role_manage),
    services: Services = Depends(get_services),
) -> list[RoleRead]:
    return services.role_admin.list_roles(db)


@admin_router.get("/capabilities", response_model=list[CapabilityRead])
def list_capabilities(
    db: Session = Depends(get_db),
    _ctx: PermissionContext = Depends(_require_role_manage),
    services: Services = Depends(get_services),
) -> list[CapabilityRead]:
    return services.role_admin.list_capabilities(db)


@admin_router.post(
    "/roles/{role_name}/capabilities/{code}",
    response_model=RoleCapabilityRead,
    status_code=status.HTTP_201_CREATED,
)
def grant_capability(
    role_name: str,
    code: str,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(_require_role_manage),
    services: Services = Depends(get_services),
) -> RoleCapabilityRead:
    return services.role_admin.grant_capability(
        db, role_name, code, actor_id=ctx.user_id, origin=get_request_origin(request)
    )


@admin_router.delete("/roles/{role_name}/capabilities/{code}", status_code=status.HTTP_200_OK)
def revoke_capability(
    role_name: str,
    code: str,
    request: Request,
    db: Session = Depends(get_db),
    ctx: PermissionContext = Depends(_require_role_manage),
    services: Services = Depends(get_services),
) -> None:
    services.role_admin.revoke_capability(db, role_name, code, actor_id=ctx.user_id, origin=get_request_origin(request))
