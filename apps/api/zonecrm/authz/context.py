from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class PermissionContext:
    """Read-only snapshot of what a user may reach, built once per request."""

    user_id: int
    role: str
    accessible_zones: frozenset[int]
    capabilities: frozenset[str]
    primary_zone_id: int | None = None

    def can_reach(self, zone_id: int) -> bool:
        return zone_id in self.accessible_zones

    def has_capability(self, code: str) -> bool:
        return str(code) in self.capabilities
