from zonecrm.authz.models import Capability, Role, RoleCapability

__all__ = [
    "Role",
    "Capability",
    "RoleCapability",
]
