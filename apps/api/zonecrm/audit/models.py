from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Index, Integer, String, event
from sqlalchemy.orm import Mapped, mapped_column

from zonecrm.audit.errors import AuditImmutableError
from zonecrm.core.database import Base


DENIED_ACTION = "denied"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditLog(Base):
    """One append-only audit row.

    Zone and user ids are kept as plain integers without foreign keys so the
    trail outlives the zones and users it mentions.

    The mapper events below reject updates and deletes made through the ORM
    unit of work only. Core ``update()``/``delete()`` statements and raw SQL
    bypass them; on PostgreSQL the migration adds a trigger that rejects those
    too. Elsewhere, a row changed outside the ORM fails checksum verification.
    """

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    zone_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(512), nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)

    __table_args__ = (Index("ix_audit_logs_entity", "entity_type", "entity_id"),)


@event.listens_for(AuditLog, "before_update")
def _reject_update(mapper: Any, connection: Any, target: AuditLog) -> None:
    raise AuditImmutableError(target.id, "update")


@event.listens_for(AuditLog, "before_delete")
def _reject_delete(mapper: Any, connection: Any, target: AuditLog) -> None:
    raise AuditImmutableError(target.id, "delete")
