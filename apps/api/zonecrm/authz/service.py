from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from zonecrm.audit.sink import AuditSink
from zonecrm.authz.capabilities import CapabilityCode
from zonecrm.authz.errors import UnknownCapabilityError
from zonecrm.authz.models import Capability, Role, RoleCapability
from zonecrm.authz.schemas import CapabilityRead, RoleCapabilityRead, RoleRead
from zonecrm.context import RequestOrigin


class RoleAdminService:
    """Role to capability grants. Changes apply to the next authorization check."""

    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    def list_roles(self, session: Session) -> list[RoleRead]:
        roles = session.scalars(select(Role).order_by(Role.name.asc())).all()
        rows = session.execute(
            select(RoleCapability.role_id, Capability.code)
            .join(Capability, Capability.id == RoleCapability.capability_id)
            .order_by(Capability.code.asc())
        ).all()
        grants: dict[int, list[str]] = {}
        for role_id, code in rows:
            grants.setdefault(role_id, []).append(code)
        return [
            RoleRead(id=role.id, name=role.name, description=role.description, capabilities=grants.get(role.id, []))
            for role in roles
        ]

    def list_capabilities(self, session: Session) -> list[CapabilityRead]:
        rows = session.scalars(select(Capability).order_by(Capability.module.asc(), Capability.code.asc())).all()
        return [CapabilityRead.model_validate(row) for row in rows]

    def grant_capability(
        self,
        session: Session,
        role_name: str,
        code: str,
        *,
        actor_id: int,
        origin: RequestOrigin,
    ) -> RoleCapabilityRead:
        role, capability = self._resolve(session, role_name, code)

        mapping = session.scalar(
            select(RoleCapability).where(
                and_(RoleCapability.role_id == role.id, RoleCapability.capability_id == capability.id)
            )
        )
        created = mapping is None
        if mapping is None:
            mapping = RoleCapability(role_id=role.id, capability_id=capability.id)
            session.add(mapping)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="grant changed concurrently")
            session.refresh(mapping)

        if created:
            self._sink.log_activity(
                user_id=actor_id,
                entity_type="role_capability",
                entity_id=f"{role.name}:{capability.code}",
                action="granted",
                new_values={"role": role.name, "capability": capability.code},
                ip_address=origin.ip_address,
                user_agent=origin.user_agent,
            )

        return RoleCapabilityRead(
            role_id=role.id,
            role_name=role.name,
            capability_id=capability.id,
            capability=capability.code,
            created_at=mapping.created_at,
        )

    def revoke_capability(
        self,
        session: Session,
        role_name: str,
        code: str,
        *,
        actor_id: int,
        origin: RequestOrigin,
    ) -> None:
        role, capability = self._resolve(session, role_name, code)
        mapping = session.scalar(
            select(RoleCapability).where(
                and_(RoleCapability.role_id == role.id, RoleCapability.capability_id == capability.id)
            )
        )
        if mapping is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role-capability grant not found")

        session.delete(mapping)
        session.commit()

        self._sink.log_activity(
            user_id=actor_id,
            entity_type="role_capability",
            entity_id=f"{role.name}:{capability.code}",
            action="revoked",
            old_values={"role": role.name, "capability": capability.code},
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
        )

    @staticmethod
    def _resolve(session: Session, role_name: str, code: str) -> tuple[Role, Capability]:
        role = session.scalar(select(Role).where(Role.name == role_name))
        if role is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="role not found")
        try:
            registered = CapabilityCode.parse(code)
        except UnknownCapabilityError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        capability = session.scalar(select(Capability).where(Capability.code == registered.value))
        if capability is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="capability not found")
        return role, capability
