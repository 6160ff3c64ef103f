"""Append-only audit trail and its compliance read path."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from sqlalchemy import Select, select
from sqlalchemy.orm import Session, sessionmaker

from zonecrm.audit.integrity import compute_checksum, verify_row
from zonecrm.audit.models import DENIED_ACTION, AuditLog, utcnow
from zonecrm.audit.schemas import AuditEntry, AuditRead
from zonecrm.context import get_correlation_id
from zonecrm.metrics import observe_audit_read_failure, observe_audit_write, observe_audit_write_failure

if TYPE_CHECKING:
    from zonecrm.audit.dispatch import ActivityDispatcher


logger = logging.getLogger("zonecrm.audit")

_USER_AGENT_MAX = 512


def _json_safe(values: Mapping[str, Any] | None) -> dict[str, Any] | None:
    if values is None:
        return None
    return json.loads(json.dumps(dict(values), default=str))


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditSink:
    """Writes audit rows and serves the read-only queries over them.

    ``log``, ``log_denial`` and ``log_activity`` never raise to the caller; a
    failed write is logged and counted. Reads return newest first, with
    ``limit`` clamped to ``[1, max_limit]``, and an empty list when the store
    cannot be read.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        *,
        max_limit: int = 500,
        dispatcher: ActivityDispatcher | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._max_limit = max(1, max_limit)
        self._dispatcher = dispatcher

    def store(self, entry: AuditEntry) -> int:
        """Persist one row and return its id. Storage errors propagate."""

        user_agent = entry.user_agent[:_USER_AGENT_MAX] if entry.user_agent else entry.user_agent
        content: dict[str, Any] = {
            "zone_id": entry.zone_id,
            "user_id": entry.user_id,
            "entity_type": entry.entity_type,
            "entity_id": entry.entity_id,
            "action": entry.action,
            "old_values": _json_safe(entry.old_values),
            "new_values": _json_safe(entry.new_values),
            "ip_address": entry.ip_address,
            "user_agent": user_agent,
            "correlation_id": entry.correlation_id or get_correlation_id(),
            "created_at": _as_utc(entry.created_at) or utcnow(),
        }
        row = AuditLog(**content, checksum=compute_checksum(content))
        with self._session_factory() as session:
            session.add(row)
            session.commit()
            entry_id = row.id
        observe_audit_write(entry.action)
        return entry_id

    def log(self, entry: AuditEntry) -> int | None:
        try:
            return self.store(entry)
        except Exception as exc:
            fields = entry.model_dump(include={"user_id", "zone_id", "entity_type", "entity_id", "action"})
            self._write_failed(exc, fields)
            return None

    def _build_entry(self, **fields: Any) -> AuditEntry | None:
        try:
            return AuditEntry(**fields)
        except ValidationError as exc:
            self._write_failed(exc, fields)
            return None

    @staticmethod
    def _write_failed(exc: Exception, fields: Mapping[str, Any]) -> None:
        action = str(fields.get("action"))
        observe_audit_write_failure(action)
        logger.error(
            "audit.write_failed",
            exc_info=True,
            extra={
                "user_id": fields.get("user_id"),
                "zone_id": fields.get("zone_id"),
                "entity_type": fields.get("entity_type"),
                "entity_id": fields.get("entity_id"),
                "action": action,
                "error": str(exc),
            },
        )

    def log_denial(
        self,
        zone_id: int | None,
        user_id: int | None,
        reason: str,
        entity_type: str,
        entity_id: int | str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        details: Mapping[str, Any] | None = None,
    ) -> None:
        entry = self._build_entry(
            zone_id=zone_id,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=DENIED_ACTION,
            new_values={**(details or {}), "reason": reason},
            ip_address=ip_address,
            user_agent=user_agent,
        )
        audit_id = self.log(entry) if entry is not None else None
        logger.info(
            "audit.denial_recorded",
            extra={
                "user_id": user_id,
                "zone_id": zone_id,
                "entity_type": entry.entity_type if entry is not None else entity_type,
                "entity_id": entry.entity_id if entry is not None else entity_id,
                "reason": reason,
                "audit_id": audit_id,
            },
        )

    def log_activity(
        self,
        *,
        user_id: int | None,
        entity_type: str,
        action: str,
        zone_id: int | None = None,
        entity_id: int | str | None = None,
        old_values: Mapping[str, Any] | None = None,
        new_values: Mapping[str, Any] | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        """Record a change; written in the background when a dispatcher is configured."""

        entry = self._build_entry(
            zone_id=zone_id,
            user_id=user_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_values=_json_safe(old_values),
            new_values=_json_safe(new_values),
            ip_address=ip_address,
            user_agent=user_agent,
            correlation_id=get_correlation_id(),
            created_at=utcnow(),
        )
        if entry is None:
            return
        if self._dispatcher is None:
            self.log(entry)
            return
        self._dispatcher.dispatch(entry, self.log)

    def entity_logs(self, entity_type: str, entity_id: int | str, limit: int = 50) -> list[AuditRead]:
        stmt = select(AuditLog).where(AuditLog.entity_type == entity_type, AuditLog.entity_id == str(entity_id))
        return self._query("entity_logs", stmt, limit)

    def user_actions(self, user_id: int, limit: int = 50) -> list[AuditRead]:
        return self._query("user_actions", select(AuditLog).where(AuditLog.user_id == user_id), limit)

    def zone_logs(self, zone_id: int, limit: int = 100) -> list[AuditRead]:
        return self._query("zone_logs", select(AuditLog).where(AuditLog.zone_id == zone_id), limit)

    def access_denials(
        self,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int = 100,
    ) -> list[AuditRead]:
        stmt = select(AuditLog).where(AuditLog.action == DENIED_ACTION)
        if from_date is not None:
            stmt = stmt.where(AuditLog.created_at >= _as_utc(from_date))
        if to_date is not None:
            stmt = stmt.where(AuditLog.created_at <= _as_utc(to_date))
        return self._query("access_denials", stmt, limit)

    def verify(self, entry_id: int) -> bool | None:
        """Recompute the checksum of one row; None when the row does not exist."""

        with self._session_factory() as session:
            row = session.get(AuditLog, entry_id)
            if row is None:
                return None
            valid = verify_row(row)
        if not valid:
            logger.warning("audit.checksum_mismatch", extra={"audit_id": entry_id})
        return valid

    def _clamp(self, limit: int) -> int:
        return max(1, min(int(limit), self._max_limit))

    def _query(self, query: str, stmt: Select[tuple[AuditLog]], limit: int) -> list[AuditRead]:
        stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(self._clamp(limit))
        try:
            with self._session_factory() as session:
                rows = session.scalars(stmt).all()
                return [AuditRead.model_validate(row) for row in rows]
        except Exception as exc:
            observe_audit_read_failure(query)
            logger.error(
                "audit.read_failed",
                exc_info=True,
                extra={"action": query, "error": str(exc)},
            )
            return []
