"""Registry of capability codes known to the grant table.

Entity services refer to capabilities through :class:`CapabilityCode` instead of
building strings by hand, so a misspelled code fails loudly instead of silently
denying every request.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.orm import Session

from zonecrm.authz.errors import CapabilityRegistryMismatch, UnknownCapabilityError
from zonecrm.authz.models import Capability


class CapabilityCode(StrEnum):
    CORE_USER_READ = "core.user.read"
    CORE_USER_MANAGE = "core.user.manage"
    CORE_ZONE_MANAGE = "core.zone.manage"
    CORE_ROLE_MANAGE = "core.role.manage"

    LEAD_CREATE = "lead.create"
    LEAD_READ = "lead.read"
    LEAD_EDIT = "lead.edit"
    LEAD_ASSIGN = "lead.assign"
    LEAD_DELETE = "lead.delete"

    PROJECT_CREATE = "project.create"
    PROJECT_READ = "project.read"
    PROJECT_EDIT = "project.edit"
    PROJECT_TRANSITION = "project.transition"

    TASK_CREATE = "task.create"
    TASK_READ = "task.read"
    TASK_EDIT = "task.edit"
    TASK_ASSIGN = "task.assign"

    MEETING_CREATE = "meeting.create"
    MEETING_READ = "meeting.read"
    MEETING_EDIT = "meeting.edit"

    PRICING_READ = "pricing.read"
    PRICING_EDIT = "pricing.edit"
    PRICING_APPLY = "pricing.apply"

    REPORT_VIEW = "report.view"
    REPORT_EXPORT = "report.export"

    @property
    def module(self) -> str:
        prefix = self.value.split(".", 1)[0]
        return _MODULE_BY_PREFIX[prefix]

    @classmethod
    def parse(cls, code: str) -> CapabilityCode:
        try:
            return cls(code)
        except ValueError:
            raise UnknownCapabilityError(code) from None

    @classmethod
    def for_action(cls, entity_type: str, action: str) -> CapabilityCode:
        return cls.parse(f"{entity_type}.{action}")


class RoleName(StrEnum):
    SUPER_ADMIN = "super_admin"
    ZONE_ADMIN = "zone_admin"
    MANAGER = "manager"
    STAFF = "staff"
    VIEWER = "viewer"


# Higher ranks may grant, change and revoke memberships of lower or equal rank.
ROLE_RANK: Mapping[RoleName, int] = {
    RoleName.VIEWER: 0,
    RoleName.STAFF: 1,
    RoleName.MANAGER: 2,
    RoleName.ZONE_ADMIN: 3,
    RoleName.SUPER_ADMIN: 4,
}


def role_rank(name: str | None) -> int | None:
    if name is None:
        return None
    try:
        return ROLE_RANK[RoleName(name)]
    except ValueError:
        return None


_MODULE_BY_PREFIX = {
    "core": "core",
    "lead": "leads",
    "project": "projects",
    "task": "tasks",
    "meeting": "meetings",
    "pricing": "pricing",
    "report": "reports",
}

# Granted to every authenticated user regardless of role.
BASELINE_CAPABILITIES: frozenset[str] = frozenset({CapabilityCode.CORE_USER_READ.value})

_ALL = frozenset(CapabilityCode)
_ADMIN_ONLY = frozenset({CapabilityCode.CORE_ZONE_MANAGE, CapabilityCode.CORE_ROLE_MANAGE})

DEFAULT_ROLE_GRANTS: Mapping[RoleName, frozenset[CapabilityCode]] = {
    RoleName.SUPER_ADMIN: _ALL,
    RoleName.ZONE_ADMIN: _ALL - _ADMIN_ONLY,
    RoleName.MANAGER: frozenset(
        code
        for code in CapabilityCode
        if code.module in {"leads", "projects", "tasks", "meetings"}
    )
    | {
        CapabilityCode.PRICING_READ,
        CapabilityCode.PRICING_APPLY,
        CapabilityCode.REPORT_VIEW,
        CapabilityCode.REPORT_EXPORT,
    },
    RoleName.STAFF: frozenset(
        {
            CapabilityCode.LEAD_READ,
            CapabilityCode.LEAD_CREATE,
            CapabilityCode.LEAD_EDIT,
            CapabilityCode.PROJECT_READ,
            CapabilityCode.TASK_READ,
            CapabilityCode.TASK_CREATE,
            CapabilityCode.TASK_EDIT,
            CapabilityCode.MEETING_READ,
            CapabilityCode.MEETING_CREATE,
            CapabilityCode.PRICING_READ,
        }
    ),
    RoleName.VIEWER: frozenset(
        {
            CapabilityCode.LEAD_READ,
            CapabilityCode.PROJECT_READ,
            CapabilityCode.TASK_READ,
            CapabilityCode.MEETING_READ,
            CapabilityCode.PRICING_READ,
            CapabilityCode.REPORT_VIEW,
        }
    ),
}


def find_registry_mismatches(table_codes: Iterable[str]) -> tuple[set[str], set[str]]:
    """Return (registered codes missing from the table, table codes missing from the registry)."""

    known = {code.value for code in CapabilityCode}
    stored = set(table_codes)
    return known - stored, stored - known


def validate_capability_registry(session: Session) -> set[str]:
    """Check the registry against the capability table.

    Raises when a registered code has no row; returns table codes that the
    registry does not know about so the caller can log them.
    """

    table_codes = session.scalars(select(Capability.code)).all()
    missing_from_table, unregistered = find_registry_mismatches(table_codes)
    if missing_from_table:
        raise CapabilityRegistryMismatch(sorted(missing_from_table))
    return unregistered
