from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

# column widths of audit_logs
_LABEL_MAX = 64
_ENTITY_ID_MAX = 128
_UNLABELLED = "unknown"


class AuditEntry(BaseModel):
    zone_id: int | None = None
    user_id: int | None = None
    entity_type: str = Field(min_length=1, max_length=_LABEL_MAX)
    entity_id: str | None = Field(default=None, max_length=_ENTITY_ID_MAX)
    action: str = Field(min_length=1, max_length=_LABEL_MAX)
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    correlation_id: str | None = None
    created_at: datetime | None = None

    @field_validator("entity_type", "action", mode="before")
    @classmethod
    def _clip_label(cls, value: Any) -> Any:
        if value is None:
            return value
        text = str(value).strip()
        return text[:_LABEL_MAX] or _UNLABELLED

    @field_validator("entity_id", mode="before")
    @classmethod
    def _entity_id_as_text(cls, value: Any) -> str | None:
        if value is None:
            return None
        return str(value)[:_ENTITY_ID_MAX]


class AuditRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    zone_id: int | None
    user_id: int | None
    entity_type: str
    entity_id: str | None
    action: str
    old_values: dict[str, Any] | None
    new_values: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    correlation_id: str | None
    checksum: str
    created_at: datetime


class AuditVerifyRead(BaseModel):
    id: int
    valid: bool
