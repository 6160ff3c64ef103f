"""Zone membership and hierarchy lookups.

By default every public lookup fails closed: a storage error is logged and
answered with "no access" (empty set, ``False`` or ``None``), never with a grant.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from zonecrm.metrics import observe_zone_lookup_failure
from zonecrm.zones.models import User, Zone, ZoneMembership


logger = logging.getLogger("zonecrm.zones")

T = TypeVar("T")


def walk_descendants(session: Session, roots: Iterable[int]) -> set[int]:
    """Every zone below ``roots``, excluding the roots themselves."""

    seen: set[int] = set()
    frontier = set(roots)
    start = set(frontier)
    while frontier:
        children = set(session.scalars(select(Zone.id).where(Zone.parent_id.in_(sorted(frontier)))).all())
        frontier = children - seen - start
        seen |= frontier
    return seen


def walk_ancestors(session: Session, zone_id: int) -> list[int]:
    chain: list[int] = []
    seen = {zone_id}
    current = session.scalar(select(Zone.parent_id).where(Zone.id == zone_id))
    while current is not None and current not in seen:
        chain.append(current)
        seen.add(current)
        current = session.scalar(select(Zone.parent_id).where(Zone.id == current))
    return chain


@dataclass(frozen=True, slots=True)
class MembershipView:
    zone_id: int
    role: str
    is_primary: bool
    assigned_at: datetime


class ZoneDirectory:
    """Explicit-membership directory: a user reaches exactly the zones they belong to.

    With ``fail_closed=False`` storage errors are still logged and counted but
    re-raised, so the authorization engine can report a failed check instead of
    an ordinary denial.
    """

    def __init__(self, session_factory: sessionmaker[Session], *, fail_closed: bool = True) -> None:
        self._session_factory = session_factory
        self._fail_closed = fail_closed

    def memberships(self, user_id: int) -> list[MembershipView]:
        return self._lookup("memberships", user_id, list, lambda session: self._load_memberships(session, user_id))

    def accessible_zones(self, user_id: int) -> set[int]:
        return self._lookup(
            "accessible_zones",
            user_id,
            set,
            lambda session: {item.zone_id for item in self._load_memberships(session, user_id)},
        )

    def is_member(self, user_id: int, zone_id: int) -> bool:
        return self._lookup(
            "is_member",
            user_id,
            lambda: False,
            lambda session: any(item.zone_id == zone_id for item in self._load_memberships(session, user_id)),
        )

    def role_in_zone(self, user_id: int, zone_id: int) -> str | None:
        def load(session: Session) -> str | None:
            for item in self._load_memberships(session, user_id):
                if item.zone_id == zone_id:
                    return item.role
            return None

        return self._lookup("role_in_zone", user_id, lambda: None, load)

    def primary_zone(self, user_id: int) -> int | None:
        def load(session: Session) -> int | None:
            rows = self._load_memberships(session, user_id)
            if not rows:
                return None
            for item in rows:
                if item.is_primary:
                    return item.zone_id
            return rows[0].zone_id

        return self._lookup("primary_zone", user_id, lambda: None, load)

    def descendants(self, zone_id: int) -> set[int]:
        return self._lookup("descendants", None, set, lambda session: walk_descendants(session, [zone_id]))

    def ancestors(self, zone_id: int) -> list[int]:
        """Ancestor ids ordered from the direct parent up to the root."""

        return self._lookup("ancestors", None, list, lambda session: walk_ancestors(session, zone_id))

    def _lookup(
        self,
        lookup: str,
        user_id: int | None,
        fallback: Callable[[], T],
        load: Callable[[Session], T],
    ) -> T:
        try:
            with self._session_factory() as session:
                return load(session)
        except SQLAlchemyError as exc:
            observe_zone_lookup_failure(lookup)
            logger.error(
                "zone_directory.lookup_failed",
                exc_info=True,
                extra={"user_id": user_id, "action": lookup, "error": str(exc)},
            )
            if not self._fail_closed:
                raise
            return fallback()

    @staticmethod
    def _load_memberships(session: Session, user_id: int) -> list[MembershipView]:
        rows = session.execute(
            select(
                ZoneMembership.zone_id,
                ZoneMembership.role,
                ZoneMembership.is_primary,
                ZoneMembership.assigned_at,
            )
            .join(User, User.id == ZoneMembership.user_id)
            .where(ZoneMembership.user_id == user_id, User.is_active.is_(True))
            .order_by(ZoneMembership.is_primary.desc(), ZoneMembership.assigned_at.asc(), ZoneMembership.id.asc())
        ).all()
        return [
            MembershipView(
                zone_id=int(row.zone_id),
                role=str(row.role),
                is_primary=bool(row.is_primary),
                assigned_at=row.assigned_at,
            )
            for row in rows
        ]


class HierarchicalZoneDirectory(ZoneDirectory):
    """Directory where a membership also reaches every descendant zone.

    The role in an inherited zone is the role held in the nearest ancestor the
    user explicitly belongs to.
    """

    def accessible_zones(self, user_id: int) -> set[int]:
        def load(session: Session) -> set[int]:
            explicit = {item.zone_id for item in self._load_memberships(session, user_id)}
            if not explicit:
                return set()
            return explicit | walk_descendants(session, explicit)

        return self._lookup("accessible_zones", user_id, set, load)

    def is_member(self, user_id: int, zone_id: int) -> bool:
        return zone_id in self.accessible_zones(user_id)

    def role_in_zone(self, user_id: int, zone_id: int) -> str | None:
        def load(session: Session) -> str | None:
            roles = {item.zone_id: item.role for item in self._load_memberships(session, user_id)}
            if zone_id in roles:
                return roles[zone_id]
            for ancestor in walk_ancestors(session, zone_id):
                if ancestor in roles:
                    return roles[ancestor]
            return None

        return self._lookup("role_in_zone", user_id, lambda: None, load)
