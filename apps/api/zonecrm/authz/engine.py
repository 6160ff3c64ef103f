"""Authorization engine: zone guard, capability guard and entity predicate.

Every evaluation re-reads the store, so a revoked membership or grant is seen by
the next call. Evaluations never raise: a storage error or a failing predicate
becomes a "Permission check failed" denial.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from zonecrm.authz.capabilities import CapabilityCode, RoleName, role_rank
from zonecrm.authz.context import PermissionContext
from zonecrm.authz.decision import (
    ASSIGN_CAPABILITY_REASON,
    ASSIGN_TARGET_REASON,
    CHECK_FAILED_REASON,
    CROSS_ZONE_REASON,
    PREDICATE_REASON,
    ROLE_CEILING_REASON,
    SUPER_ADMIN_REASON,
    Decision,
    DenialKind,
    missing_capability_reason,
)
from zonecrm.authz.errors import UnknownCapabilityError
from zonecrm.authz.resolver import CapabilityResolver
from zonecrm.metrics import observe_authz_decision
from zonecrm.otel import annotate_decision, authz_span
from zonecrm.zones.directory import ZoneDirectory
from zonecrm.zones.models import User


logger = logging.getLogger("zonecrm.authz")

Predicate = Callable[[int], bool]


class AuthorizationEngine:
    def __init__(
        self,
        directory: ZoneDirectory,
        resolver: CapabilityResolver,
        session_factory: sessionmaker[Session],
    ) -> None:
        self._directory = directory
        self._resolver = resolver
        self._session_factory = session_factory

    def can_access_entity(self, user_id: int, entity_zone_id: int) -> Decision:
        return self._evaluate(
            "entity_access",
            user_id,
            entity_zone_id,
            lambda: self._zone_guard(user_id, entity_zone_id),
        )

    def has_capability_in_zone(self, user_id: int, code: str, zone_id: int) -> bool:
        capability = self._registered(user_id, code)
        if capability is None:
            return False
        try:
            return self._holds_in_zone(user_id, capability, zone_id)
        except SQLAlchemyError:
            return False

    def can_use_capability(self, user_id: int, code: str) -> Decision:
        """Capability check with no zone axis, for administrative surfaces."""

        def evaluate() -> Decision:
            capability = self._registered(user_id, code)
            if capability is None or not self._resolver.has_capability(user_id, capability):
                return Decision.deny(
                    DenialKind.CAPABILITY_MISSING,
                    missing_capability_reason(str(code)),
                    capability=str(code),
                )
            return Decision.allow()

        return self._evaluate("capability", user_id, None, evaluate)

    def can_assign_to_user(
        self,
        assigner_id: int,
        target_user_id: int,
        target_zone_id: int,
        capability: str = CapabilityCode.LEAD_ASSIGN,
    ) -> Decision:
        """Same-zone assignment rule.

        The assigner must hold ``capability`` and reach ``target_zone_id``; the
        target must be a member of that zone. Administrators get no bypass here.
        """

        details: dict[str, Any] = {"target_user_id": target_user_id, "target_zone_id": target_zone_id}

        def evaluate() -> Decision:
            code = self._registered(assigner_id, capability)
            if code is None or not self._holds_in_zone(assigner_id, code, target_zone_id):
                return Decision.deny(
                    DenialKind.ASSIGNMENT_REJECTED,
                    ASSIGN_CAPABILITY_REASON,
                    capability=str(capability),
                    **details,
                )
            if not self._directory.is_member(target_user_id, target_zone_id):
                return Decision.deny(DenialKind.ASSIGNMENT_REJECTED, ASSIGN_TARGET_REASON, **details)
            return Decision.allow()

        return self._evaluate("assignment", assigner_id, target_zone_id, evaluate)

    def can_perform_action(
        self,
        user_id: int,
        action: str,
        entity_type: str,
        entity_zone_id: int,
        predicate: Predicate | None = None,
    ) -> Decision:
        """Zone guard, then ``<entity_type>.<action>``, then the predicate. First failure wins."""

        def evaluate() -> Decision:
            zone_decision = self._zone_guard(user_id, entity_zone_id)
            if not zone_decision.allowed:
                return zone_decision

            code = f"{entity_type}.{action}"
            capability = self._registered(user_id, code)
            if capability is None or not self._resolver.has_capability(user_id, capability):
                return Decision.deny(
                    DenialKind.CAPABILITY_MISSING,
                    missing_capability_reason(code),
                    capability=code,
                    zone_id=entity_zone_id,
                )

            if predicate is not None and not predicate(user_id):
                return Decision.deny(DenialKind.PREDICATE_FAILED, PREDICATE_REASON, zone_id=entity_zone_id)
            return Decision.allow()

        return self._evaluate("action", user_id, entity_zone_id, evaluate)

    def can_manage_role(
        self,
        actor_id: int,
        zone_id: int,
        target_user_id: int,
        role: str | None = None,
    ) -> Decision:
        """Role ceiling for membership changes in ``zone_id``.

        ``role`` is the role being granted, or None for a revoke. Only a super
        admin may grant ``super_admin`` or change any membership of a super admin.
        Everyone else is capped at their own role in the zone, and the target's
        current role counts against the cap as well as the requested one.
        """

        details: dict[str, Any] = {"zone_id": zone_id, "target_user_id": target_user_id}
        if role is not None:
            details["role"] = role

        def evaluate() -> Decision:
            if self._holds_super_admin(actor_id):
                return Decision.allow()
            if role == RoleName.SUPER_ADMIN or self._holds_super_admin(target_user_id):
                return Decision.deny(DenialKind.ROLE_REQUIRED, SUPER_ADMIN_REASON, **details)

            current = self._directory.role_in_zone(target_user_id, zone_id)
            touched = [name for name in (role, current) if name is not None]
            ceiling = role_rank(self._directory.role_in_zone(actor_id, zone_id))
            for name in touched:
                rank = role_rank(name)
                # names outside the role set are rejected when the membership is written
                if rank is not None and (ceiling is None or rank > ceiling):
                    return Decision.deny(DenialKind.ROLE_REQUIRED, ROLE_CEILING_REASON, **details)
            return Decision.allow()

        return self._evaluate("role_grant", actor_id, zone_id, evaluate)

    def is_super_admin(self, user_id: int) -> bool:
        try:
            return self._holds_super_admin(user_id)
        except SQLAlchemyError:
            return False

    def is_zone_admin(self, user_id: int, zone_id: int) -> bool:
        return self.role_in_zone(user_id, zone_id) == RoleName.ZONE_ADMIN

    def role_in_zone(self, user_id: int, zone_id: int) -> str | None:
        try:
            return self._directory.role_in_zone(user_id, zone_id)
        except SQLAlchemyError:
            return None

    def permission_context(self, user_id: int) -> PermissionContext | None:
        """Snapshot for one request, or None for unknown and inactive users."""

        try:
            with self._session_factory() as session:
                user = session.get(User, user_id)
                if user is None or not user.is_active:
                    return None
            memberships = self._directory.memberships(user_id)
            zones = self._directory.accessible_zones(user_id)
            capabilities = self._resolver.capabilities_of(user_id)
        except SQLAlchemyError as exc:
            logger.error(
                "authz.context_failed",
                exc_info=True,
                extra={"user_id": user_id, "error": str(exc)},
            )
            return None

        # memberships come primary first, then oldest first
        primary = memberships[0] if memberships else None
        return PermissionContext(
            user_id=user_id,
            role=primary.role if primary is not None else RoleName.VIEWER.value,
            accessible_zones=frozenset(zones),
            capabilities=capabilities,
            primary_zone_id=primary.zone_id if primary is not None else None,
        )

    def _zone_guard(self, user_id: int, zone_id: int) -> Decision:
        if self._directory.is_member(user_id, zone_id):
            return Decision.allow()
        return Decision.deny(DenialKind.ZONE_MISMATCH, CROSS_ZONE_REASON, zone_id=zone_id)

    def _holds_super_admin(self, user_id: int) -> bool:
        return any(item.role == RoleName.SUPER_ADMIN for item in self._directory.memberships(user_id))

    def _holds_in_zone(self, user_id: int, capability: CapabilityCode, zone_id: int) -> bool:
        return self._resolver.has_capability(user_id, capability) and self._directory.is_member(user_id, zone_id)

    @staticmethod
    def _registered(user_id: int, code: str) -> CapabilityCode | None:
        try:
            return CapabilityCode.parse(str(code))
        except UnknownCapabilityError:
            logger.error(
                "authz.unknown_capability",
                extra={"user_id": user_id, "capability": str(code)},
            )
            return None

    def _evaluate(
        self,
        check: str,
        user_id: int,
        zone_id: int | None,
        evaluate: Callable[[], Decision],
    ) -> Decision:
        with authz_span(check, user_id, zone_id) as span:
            try:
                decision = evaluate()
            except Exception as exc:
                logger.error(
                    "authz.check_failed",
                    exc_info=True,
                    extra={"user_id": user_id, "zone_id": zone_id, "action": check, "error": str(exc)},
                )
                decision = Decision.deny(DenialKind.STORAGE_FAILURE, CHECK_FAILED_REASON)

            annotate_decision(span, decision)
            observe_authz_decision(check, decision.allowed, decision.kind)

            if not decision.allowed:
                logger.info(
                    "authz.denied",
                    extra={
                        "user_id": user_id,
                        "zone_id": zone_id,
                        "action": check,
                        "reason": decision.reason,
                        "kind": decision.kind,
                    },
                )
            return decision
