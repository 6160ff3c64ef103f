from __future__ import annotations


class ZoneError(Exception):
    """Base error for zone and membership administration."""


class ZoneNotFoundError(ZoneError):
    def __init__(self, zone_id: int) -> None:
        self.zone_id = zone_id
        super().__init__(f"zone {zone_id} not found")


class ZoneHierarchyError(ZoneError):
    """Raised when a parent assignment would break the zone tree."""


class MembershipError(ZoneError):
    """Raised for memberships that reference unknown users, zones or roles."""
