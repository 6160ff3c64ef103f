from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from zonecrm.zones.models import ZoneLevel


class ZoneCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=255)
    level: ZoneLevel
    parent_id: int | None = None
    metadata: dict[str, Any] | None = None


class ZoneUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    parent_id: int | None = None
    metadata: dict[str, Any] | None = None


class ZoneRead(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    code: str
    name: str
    level: str
    parent_id: int | None
    metadata: dict[str, Any] | None = Field(default=None, validation_alias="zone_metadata")
    created_at: datetime
    updated_at: datetime


class MembershipGrant(BaseModel):
    user_id: int
    role: str = Field(min_length=1, max_length=50)
    is_primary: bool = False


class MembershipRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: int
    zone_id: int
    role: str
    is_primary: bool
    assigned_at: datetime
