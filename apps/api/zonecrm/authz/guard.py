from __future__ import annotations

import logging
from typing import Any

from zonecrm.audit.sink import AuditSink
from zonecrm.authz.capabilities import CapabilityCode
from zonecrm.authz.decision import CHECK_FAILED_REASON, Decision
from zonecrm.authz.engine import AuthorizationEngine, Predicate
from zonecrm.authz.errors import AuthorizationDenied
from zonecrm.context import RequestOrigin


logger = logging.getLogger("zonecrm.authz")


class AccessGuard:
    """Call-site helper for entity services.

    Each ``require_*`` method evaluates one engine check. A denial is written to
    the audit sink exactly once, synchronously, and then raised as
    :class:`AuthorizationDenied`; an allow returns the decision.
    """

    def __init__(self, engine: AuthorizationEngine, sink: AuditSink) -> None:
        self._engine = engine
        self._sink = sink

    def require_entity_access(
        self,
        user_id: int,
        entity_zone_id: int,
        *,
        entity_type: str,
        entity_id: int | str | None = None,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        decision = self._engine.can_access_entity(user_id, entity_zone_id)
        return self.enforce(
            decision,
            user_id=user_id,
            zone_id=entity_zone_id,
            entity_type=entity_type,
            entity_id=entity_id,
            origin=origin,
        )

    def require_action(
        self,
        user_id: int,
        action: str,
        entity_type: str,
        entity_zone_id: int,
        *,
        entity_id: int | str | None = None,
        predicate: Predicate | None = None,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        decision = self._engine.can_perform_action(user_id, action, entity_type, entity_zone_id, predicate)
        return self.enforce(
            decision,
            user_id=user_id,
            zone_id=entity_zone_id,
            entity_type=entity_type,
            entity_id=entity_id,
            origin=origin,
        )

    def require_assignment(
        self,
        assigner_id: int,
        target_user_id: int,
        target_zone_id: int,
        *,
        entity_type: str,
        entity_id: int | str | None = None,
        capability: str = CapabilityCode.LEAD_ASSIGN,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        decision = self._engine.can_assign_to_user(assigner_id, target_user_id, target_zone_id, capability)
        return self.enforce(
            decision,
            user_id=assigner_id,
            zone_id=target_zone_id,
            entity_type=entity_type,
            entity_id=entity_id,
            origin=origin,
        )

    def require_capability(
        self,
        user_id: int,
        code: str,
        *,
        entity_type: str,
        entity_id: int | str | None = None,
        zone_id: int | None = None,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        decision = self._engine.can_use_capability(user_id, code)
        return self.enforce(
            decision,
            user_id=user_id,
            zone_id=zone_id,
            entity_type=entity_type,
            entity_id=entity_id,
            origin=origin,
        )

    def require_role_management(
        self,
        actor_id: int,
        zone_id: int,
        target_user_id: int,
        *,
        role: str | None = None,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        decision = self._engine.can_manage_role(actor_id, zone_id, target_user_id, role)
        return self.enforce(
            decision,
            user_id=actor_id,
            zone_id=zone_id,
            entity_type="zone_membership",
            entity_id=f"{target_user_id}:{zone_id}",
            origin=origin,
        )

    def enforce(
        self,
        decision: Decision,
        *,
        user_id: int,
        zone_id: int | None,
        entity_type: str,
        entity_id: int | str | None = None,
        origin: RequestOrigin | None = None,
    ) -> Decision:
        if decision.allowed:
            return decision

        origin = origin or RequestOrigin()
        details: dict[str, Any] = dict(decision.details)
        if decision.kind is not None:
            details["kind"] = decision.kind.value
        self._sink.log_denial(
            zone_id=zone_id,
            user_id=user_id,
            reason=decision.reason or CHECK_FAILED_REASON,
            entity_type=entity_type,
            entity_id=entity_id,
            ip_address=origin.ip_address,
            user_agent=origin.user_agent,
            details=details,
        )
        raise AuthorizationDenied(decision)
