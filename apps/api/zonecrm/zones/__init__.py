from zonecrm.zones.models import User, Zone, ZoneMembership

__all__ = [
    "User",
    "Zone",
    "ZoneMembership",
]
