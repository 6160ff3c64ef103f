from zonecrm.audit.models import AuditLog
from zonecrm.authz.models import Capability, Role, RoleCapability
from zonecrm.zones.models import User, Zone, ZoneMembership

__all__ = [
	"AuditLog",
	"Capability",
	"Role",
	"RoleCapability",
	"User",
	"Zone",
	"ZoneMembership",
]
