"""Composition root: one instance of each core component per process.

``build_services`` is called once from the application lifespan (or by tests
with their own session factory); routes receive the result through FastAPI
dependencies instead of importing module-level singletons.
"""

from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass

from fastapi import Depends
from sqlalchemy.orm import Session, sessionmaker
from starlette.requests import Request

from zonecrm.audit.dispatch import ActivityDispatcher, CeleryActivityDispatcher, InlineActivityDispatcher
from zonecrm.audit.sink import AuditSink
from zonecrm.authz.context import PermissionContext
from zonecrm.authz.engine import AuthorizationEngine
from zonecrm.authz.guard import AccessGuard
from zonecrm.authz.resolver import CapabilityResolver
from zonecrm.authz.service import RoleAdminService
from zonecrm.core.auth import AuthUser, AuthenticationRequired, get_current_user
from zonecrm.core.config import Settings
from zonecrm.zones.directory import HierarchicalZoneDirectory, ZoneDirectory
from zonecrm.zones.service import ZoneAdminService


@dataclass(frozen=True, slots=True)
class Services:
    session_factory: sessionmaker[Session]
    directory: ZoneDirectory
    resolver: CapabilityResolver
    engine: AuthorizationEngine
    sink: AuditSink
    guard: AccessGuard
    zone_admin: ZoneAdminService
    role_admin: RoleAdminService


def build_services(
    session_factory: sessionmaker[Session],
    settings: Settings,
    *,
    dispatcher: ActivityDispatcher | None = None,
) -> Services:
    directory_cls = HierarchicalZoneDirectory if settings.zone_access_mode == "descendants" else ZoneDirectory

    if dispatcher is None:
        if settings.audit_activity_dispatch == "celery":
            dispatcher = CeleryActivityDispatcher()
        else:
            dispatcher = InlineActivityDispatcher()

    # the engine gets its own non-fail-closed lookups so storage errors surface as failed checks
    engine = AuthorizationEngine(
        directory_cls(session_factory, fail_closed=False),
        CapabilityResolver(session_factory, fail_closed=False),
        session_factory,
    )
    sink = AuditSink(session_factory, max_limit=settings.audit_max_limit, dispatcher=dispatcher)
    return Services(
        session_factory=session_factory,
        directory=directory_cls(session_factory),
        resolver=CapabilityResolver(session_factory),
        engine=engine,
        sink=sink,
        guard=AccessGuard(engine, sink),
        zone_admin=ZoneAdminService(sink),
        role_admin=RoleAdminService(sink),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_db(services: Services = Depends(get_services)) -> Generator[Session, None, None]:
    session = services.session_factory()
    try:
        yield session
    finally:
        session.close()


def get_permission_context(
    user: AuthUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> PermissionContext:
    context = services.engine.permission_context(user.sub)
    if context is None:
        raise AuthenticationRequired("Unknown or inactive user")
    return context
