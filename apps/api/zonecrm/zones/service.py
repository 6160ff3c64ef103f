from __future__ import annotations

from fastapi import HTTPException, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from zonecrm.audit.sink import AuditSink
from zonecrm.authz.models import Role
from zonecrm.context import RequestOrigin
from zonecrm.zones.directory import walk_descendants
from zonecrm.zones.errors import MembershipError, ZoneHierarchyError, ZoneNotFoundError
from zonecrm.zones.models import User, Zone, ZoneLevel, ZoneMembership
from zonecrm.zones.schemas import MembershipGrant, MembershipRead, ZoneCreate, ZoneRead, ZoneUpdate


def check_parent(session: Session, zone_id: int | None, parent_id: int | None) -> None:
    """Reject a parent that is unknown, the zone itself, or one of its descendants."""

    if parent_id is None:
        return
    if session.get(Zone, parent_id) is None:
        raise ZoneHierarchyError(f"parent zone {parent_id} not found")
    if zone_id is None:
        return
    if parent_id == zone_id:
        raise ZoneHierarchyError("zone cannot be its own parent")
    if parent_id in walk_descendants(session, [zone_id]):
        raise ZoneHierarchyError(f"zone {parent_id} is a descendant of zone {zone_id}")


def promote_primary(session: Session, user_id: int) -> ZoneMembership | None:
    """Flag the oldest membership of ``user_id`` as primary when none is."""

    rows = session.scalars(
        select(ZoneMembership)
        .where(ZoneMembership.user_id == user_id)
        .order_by(ZoneMembership.assigned_at.asc(), ZoneMembership.id.asc())
    ).all()
    if not rows or any(row.is_primary for row in rows):
        return None
    rows[0].is_primary = True
    return rows[0]


class ZoneAdminService:
    def __init__(self, sink: AuditSink) -> None:
        self._sink = sink

    def create_zone(self, session: Session, dto: ZoneCreate, *, actor_id: int, origin: RequestOrigin) -> ZoneRead:
        try:
            check_parent(session, None, dto.parent_id)
        except ZoneHierarchyError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
        if dto.parent_id is None and dto.level != ZoneLevel.ROOT:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="only root zones may omit a parent")

        zone = Zone(
            code=dto.code.strip(),
            name=dto.name.strip(),
            level=dto.level.value,
            parent_id=dto.parent_id,
            zone_metadata=dto.metadata,
        )
        session.add(zone)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="zone code already exists")
        session.refresh(zone)

        result = ZoneRead.model_validate(zone)
        self._sink.log_activity(
            user_id=actor_id,
            zone_id=zone.id,
            entity_type="zone",
            entity_id=zone.id,
            action="created",
            new_values=result.model_dump(mode="json", exclude={"created_at", "updated_at"}),
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
        )
        return result

    def update_zone(
        self,
        session: Session,
        zone_id: int,
        dto: ZoneUpdate,
        *,
        actor_id: int,
        origin: RequestOrigin,
    ) -> ZoneRead:
        zone = self._get_zone(session, zone_id)
        before = ZoneRead.model_validate(zone).model_dump(mode="json", exclude={"created_at", "updated_at"})

        if "parent_id" in dto.model_fields_set:
            try:
                check_parent(session, zone.id, dto.parent_id)
            except ZoneHierarchyError as exc:
                raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
            zone.parent_id = dto.parent_id
        if dto.name is not None:
            zone.name = dto.name.strip()
        if "metadata" in dto.model_fields_set:
            zone.zone_metadata = dto.metadata

        session.commit()
        session.refresh(zone)

        result = ZoneRead.model_validate(zone)
        self._sink.log_activity(
            user_id=actor_id,
            zone_id=zone.id,
            entity_type="zone",
            entity_id=zone.id,
            action="updated",
            old_values=before,
            new_values=result.model_dump(mode="json", exclude={"created_at", "updated_at"}),
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
        )
        return result

    def list_zones(self, session: Session, zone_ids: frozenset[int] | set[int]) -> list[ZoneRead]:
        if not zone_ids:
            return []
        rows = session.scalars(select(Zone).where(Zone.id.in_(sorted(zone_ids))).order_by(Zone.code.asc())).all()
        return [ZoneRead.model_validate(row) for row in rows]

    def list_children(self, session: Session, zone_id: int) -> list[ZoneRead]:
        self._get_zone(session, zone_id)
        rows = session.scalars(select(Zone).where(Zone.parent_id == zone_id).order_by(Zone.code.asc())).all()
        return [ZoneRead.model_validate(row) for row in rows]

    def list_members(self, session: Session, zone_id: int) -> list[MembershipRead]:
        self._get_zone(session, zone_id)
        rows = session.scalars(
            select(ZoneMembership)
            .where(ZoneMembership.zone_id == zone_id)
            .order_by(ZoneMembership.assigned_at.asc(), ZoneMembership.id.asc())
        ).all()
        return [MembershipRead.model_validate(row) for row in rows]

    def grant_membership(
        self,
        session: Session,
        zone_id: int,
        dto: MembershipGrant,
        *,
        actor_id: int,
        origin: RequestOrigin,
    ) -> MembershipRead:
        try:
            membership, previous_role = self._upsert_membership(session, zone_id, dto)
        except ZoneNotFoundError as exc:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
        except MembershipError as exc:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))

        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="membership changed concurrently")
        session.refresh(membership)

        result = MembershipRead.model_validate(membership)
        self._sink.log_activity(
            user_id=actor_id,
            zone_id=zone_id,
            entity_type="zone_membership",
            entity_id=f"{dto.user_id}:{zone_id}",
            action="granted" if previous_role is None else "updated",
            old_values={"role": previous_role} if previous_role is not None else None,
            new_values={"user_id": dto.user_id, "role": result.role, "is_primary": result.is_primary},
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
        )
        return result

    def revoke_membership(
        self,
        session: Session,
        zone_id: int,
        user_id: int,
        *,
        actor_id: int,
        origin: RequestOrigin,
    ) -> None:
        membership = session.scalar(
            select(ZoneMembership).where(ZoneMembership.zone_id == zone_id, ZoneMembership.user_id == user_id)
        )
        if membership is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="membership not found")

        old_values = {"user_id": user_id, "role": membership.role, "is_primary": membership.is_primary}
        session.delete(membership)
        session.flush()
        promoted = promote_primary(session, user_id)
        session.commit()

        new_values = {"promoted_primary_zone_id": promoted.zone_id} if promoted is not None else None
        self._sink.log_activity(
            user_id=actor_id,
            zone_id=zone_id,
            entity_type="zone_membership",
            entity_id=f"{user_id}:{zone_id}",
            action="revoked",
            old_values=old_values,
            new_values=new_values,
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
        )

    @staticmethod
    def _get_zone(session: Session, zone_id: int) -> Zone:
        zone = session.get(Zone, zone_id)
        if zone is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="zone not found")
        return zone

    @staticmethod
    def _upsert_membership(
        session: Session,
        zone_id: int,
        dto: MembershipGrant,
    ) -> tuple[ZoneMembership, str | None]:
        if session.get(Zone, zone_id) is None:
            raise ZoneNotFoundError(zone_id)
        if session.get(User, dto.user_id) is None:
            raise MembershipError(f"user {dto.user_id} not found")
        if session.scalar(select(Role.id).where(Role.name == dto.role)) is None:
            raise MembershipError(f"unknown role: {dto.role}")

        memberships = session.scalars(
            select(ZoneMembership).where(ZoneMembership.user_id == dto.user_id)
        ).all()
        membership = next((item for item in memberships if item.zone_id == zone_id), None)
        previous_role = membership.role if membership is not None else None

        if membership is None:
            membership = ZoneMembership(user_id=dto.user_id, zone_id=zone_id, role=dto.role, is_primary=False)
            session.add(membership)
        else:
            membership.role = dto.role

        if dto.is_primary or not memberships:
            for item in memberships:
                if item is not membership:
                    item.is_primary = False
            membership.is_primary = True
        return membership, previous_role
