from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from zonecrm.authz.capabilities import BASELINE_CAPABILITIES
from zonecrm.authz.models import Capability, Role, RoleCapability
from zonecrm.metrics import observe_capability_lookup_failure
from zonecrm.zones.models import User, ZoneMembership


logger = logging.getLogger("zonecrm.authz")


class CapabilityResolver:
    """Flattens every membership role of a user into one capability set.

    Capabilities are resolved per user, not per zone: a manager in zone A who is
    staff in zone B holds the union of both roles everywhere. Zone reach is a
    separate check made by the authorization engine.
    """

    def __init__(self, session_factory: sessionmaker[Session], *, fail_closed: bool = True) -> None:
        self._session_factory = session_factory
        self._fail_closed = fail_closed

    def capabilities_of(self, user_id: int) -> frozenset[str]:
        try:
            with self._session_factory() as session:
                codes = session.scalars(
                    select(Capability.code)
                    .select_from(ZoneMembership)
                    .join(User, User.id == ZoneMembership.user_id)
                    .join(Role, Role.name == ZoneMembership.role)
                    .join(RoleCapability, RoleCapability.role_id == Role.id)
                    .join(Capability, Capability.id == RoleCapability.capability_id)
                    .where(ZoneMembership.user_id == user_id, User.is_active.is_(True))
                    .distinct()
                ).all()
        except SQLAlchemyError as exc:
            observe_capability_lookup_failure()
            logger.error(
                "capability_resolver.lookup_failed",
                exc_info=True,
                extra={"user_id": user_id, "error": str(exc)},
            )
            if not self._fail_closed:
                raise
            return BASELINE_CAPABILITIES
        return BASELINE_CAPABILITIES | frozenset(str(code) for code in codes)

    def has_capability(self, user_id: int, code: str) -> bool:
        return str(code) in self.capabilities_of(user_id)
