from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from zonecrm.authz.capabilities import DEFAULT_ROLE_GRANTS, CapabilityCode, RoleName
from zonecrm.authz.models import Capability, Role, RoleCapability


ROLE_DESCRIPTIONS: dict[RoleName, str] = {
    RoleName.SUPER_ADMIN: "Full system access",
    RoleName.ZONE_ADMIN: "Full control within assigned zone",
    RoleName.MANAGER: "Team management and reporting",
    RoleName.STAFF: "Own leads/tasks only",
    RoleName.VIEWER: "Read-only access",
}

CAPABILITY_CATALOG: dict[CapabilityCode, tuple[str, str]] = {
    CapabilityCode.CORE_USER_READ: ("View Users", "Read the user directory"),
    CapabilityCode.CORE_USER_MANAGE: ("Manage Users", "Create/edit/delete users"),
    CapabilityCode.CORE_ZONE_MANAGE: ("Manage Zones", "Create/edit zone hierarchy"),
    CapabilityCode.CORE_ROLE_MANAGE: ("Manage Roles", "Assign/modify roles"),
    CapabilityCode.LEAD_CREATE: ("Create Lead", "Create new leads"),
    CapabilityCode.LEAD_READ: ("View Leads", "View leads"),
    CapabilityCode.LEAD_EDIT: ("Edit Lead", "Edit lead details"),
    CapabilityCode.LEAD_ASSIGN: ("Assign Lead", "Reassign lead ownership"),
    CapabilityCode.LEAD_DELETE: ("Delete Lead", "Delete lead"),
    CapabilityCode.PROJECT_CREATE: ("Create Project", "Create project from lead"),
    CapabilityCode.PROJECT_READ: ("View Projects", "View projects"),
    CapabilityCode.PROJECT_EDIT: ("Edit Project", "Edit project"),
    CapabilityCode.PROJECT_TRANSITION: ("Transition Stage", "Move project stage"),
    CapabilityCode.TASK_CREATE: ("Create Task", "Create task"),
    CapabilityCode.TASK_READ: ("View Tasks", "View assigned tasks"),
    CapabilityCode.TASK_EDIT: ("Edit Task", "Edit task"),
    CapabilityCode.TASK_ASSIGN: ("Assign Task", "Assign task to user"),
    CapabilityCode.MEETING_CREATE: ("Schedule Meeting", "Create meeting"),
    CapabilityCode.MEETING_READ: ("View Meetings", "View meetings"),
    CapabilityCode.MEETING_EDIT: ("Edit Meeting", "Edit meeting"),
    CapabilityCode.PRICING_READ: ("View Pricing", "View price lists"),
    CapabilityCode.PRICING_EDIT: ("Edit Pricing", "Create/edit prices"),
    CapabilityCode.PRICING_APPLY: ("Apply Pricing", "Apply pricing to lead/project"),
    CapabilityCode.REPORT_VIEW: ("View Reports", "View zone reports"),
    CapabilityCode.REPORT_EXPORT: ("Export Reports", "Export to CSV/PDF"),
}


def seed_roles_and_capabilities(session: Session) -> None:
    """Insert missing roles, capabilities and default grants. Safe to run repeatedly."""

    roles = {role.name: role for role in session.scalars(select(Role)).all()}
    for name, description in ROLE_DESCRIPTIONS.items():
        if name.value not in roles:
            roles[name.value] = Role(name=name.value, description=description)
            session.add(roles[name.value])

    capabilities = {capability.code: capability for capability in session.scalars(select(Capability)).all()}
    for code, (label, description) in CAPABILITY_CATALOG.items():
        if code.value not in capabilities:
            capabilities[code.value] = Capability(code=code.value, name=label, module=code.module, description=description)
            session.add(capabilities[code.value])
    session.flush()

    existing = set(session.execute(select(RoleCapability.role_id, RoleCapability.capability_id)).tuples().all())
    for role_name, codes in DEFAULT_ROLE_GRANTS.items():
        role = roles[role_name.value]
        for code in sorted(codes):
            capability = capabilities[code.value]
            if (role.id, capability.id) not in existing:
                session.add(RoleCapability(role_id=role.id, capability_id=capability.id))
    session.commit()
