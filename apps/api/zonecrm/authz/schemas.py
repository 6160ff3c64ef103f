from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class RoleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str | None
    capabilities: list[str]


class CapabilityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    name: str
    module: str
    description: str | None


class RoleCapabilityRead(BaseModel):
    role_id: int
    role_name: str
    capability_id: int
    capability: str
    created_at: datetime


class PermissionContextRead(BaseModel):
    user_id: int
    role: str
    accessible_zones: list[int]
    capabilities: list[str]
    primary_zone_id: int | None
