from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from zonecrm.audit.api import audit_router
from zonecrm.authz.api import admin_router
from zonecrm.authz.capabilities import CapabilityCode
from zonecrm.authz.context import PermissionContext
from zonecrm.authz.schemas import PermissionContextRead
from zonecrm.container import Services, get_permission_context, get_services
from zonecrm.context import get_request_origin
from zonecrm.core.config import get_settings
from zonecrm.metrics import generate_metrics_payload, metrics_content_type
from zonecrm.zones.api import zones_router

router = APIRouter()
router.include_router(zones_router)
router.include_router(admin_router)
router.include_router(audit_router)


@router.get("/health", tags=["system"])
def health() -> dict[str, str]:
    settings = get_settings()
    return {
        "status": "ok",
        "service": settings.app_name,
        "environment": settings.app_env,
    }


@router.get("/me", tags=["auth"], response_model=PermissionContextRead)
def me(ctx: PermissionContext = Depends(get_permission_context)) -> PermissionContextRead:
    return PermissionContextRead(
        user_id=ctx.user_id,
        role=ctx.role,
        accessible_zones=sorted(ctx.accessible_zones),
        capabilities=sorted(ctx.capabilities),
        primary_zone_id=ctx.primary_zone_id,
    )


@router.get("/metrics", tags=["system"])
def metrics(
    request: Request,
    ctx: PermissionContext = Depends(get_permission_context),
    services: Services = Depends(get_services),
) -> Response:
    settings = get_settings()
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="not found")
    services.guard.require_capability(
        ctx.user_id,
        CapabilityCode.CORE_ROLE_MANAGE,
        entity_type="metrics",
        origin=get_request_origin(request),
    )
    return Response(content=generate_metrics_payload(), media_type=metrics_content_type())
