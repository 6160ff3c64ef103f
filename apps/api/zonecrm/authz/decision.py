from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class DenialKind(StrEnum):
    ZONE_MISMATCH = "zone_mismatch"
    CAPABILITY_MISSING = "capability_missing"
    ASSIGNMENT_REJECTED = "assignment_rejected"
    PREDICATE_FAILED = "predicate_failed"
    ROLE_REQUIRED = "role_required"
    STORAGE_FAILURE = "storage_failure"


ZONE_MISMATCH_CODE = "ZONE_MISMATCH"
PERMISSION_DENIED_CODE = "PERMISSION_DENIED"

CROSS_ZONE_REASON = "Cross-zone access denied"
PREDICATE_REASON = "Additional permission checks failed"
ASSIGN_CAPABILITY_REASON = "Insufficient permissions to assign"
ASSIGN_TARGET_REASON = "Target user is not in the same zone"
CHECK_FAILED_REASON = "Permission check failed"
SUPER_ADMIN_REASON = "Super admin access required"
ZONE_ADMIN_REASON = "Zone admin access required"
ROLE_CEILING_REASON = "Cannot manage a role above your own"


def missing_capability_reason(code: str) -> str:
    return f"Missing capability: {code}"


@dataclass(frozen=True, slots=True)
class Decision:
    """Outcome of one authorization check."""

    allowed: bool
    reason: str | None = None
    kind: DenialKind | None = None
    details: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, kind: DenialKind, reason: str, **details: Any) -> Decision:
        return cls(allowed=False, reason=reason, kind=kind, details=details)

    @property
    def error_code(self) -> str:
        if self.kind == DenialKind.ZONE_MISMATCH:
            return ZONE_MISMATCH_CODE
        return PERMISSION_DENIED_CODE

    def __bool__(self) -> bool:
        return self.allowed
