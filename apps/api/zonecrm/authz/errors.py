from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from zonecrm.authz.decision import Decision


class AuthorizationError(Exception):
    """Base error for the authorization core."""


class AuthorizationDenied(AuthorizationError):
    """Raised by the access guard once a denial has been audited."""

    def __init__(self, decision: Decision) -> None:
        self.decision = decision
        super().__init__(decision.reason or "Permission denied")

    @property
    def code(self) -> str:
        return self.decision.error_code


class UnknownCapabilityError(AuthorizationError, ValueError):
    def __init__(self, code: str) -> None:
        self.capability = code
        super().__init__(f"Unknown capability code: {code}")


class CapabilityRegistryMismatch(AuthorizationError):
    """Registered capability codes have no row in the grant table."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = missing
        super().__init__(f"Capability codes missing from grant table: {', '.join(missing)}")
