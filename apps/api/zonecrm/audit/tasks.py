from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from zonecrm.audit.schemas import AuditEntry
from zonecrm.audit.sink import AuditSink
from zonecrm.core.celery_app import celery_app
from zonecrm.core.config import get_settings
from zonecrm.core.database import SessionLocal


logger = logging.getLogger("zonecrm.audit")


@celery_app.task(
    name="zonecrm.audit.record_activity",
    bind=True,
    autoretry_for=(SQLAlchemyError,),
    retry_backoff=True,
    max_retries=5,
)
def record_activity(self: Any, payload: dict[str, Any]) -> int:
    entry = AuditEntry.model_validate(payload)
    sink = AuditSink(SessionLocal, max_limit=get_settings().audit_max_limit)
    try:
        return sink.store(entry)
    except SQLAlchemyError as exc:
        logger.warning(
            "audit.activity_retry",
            extra={
                "user_id": entry.user_id,
                "entity_type": entry.entity_type,
                "action": entry.action,
                "error": f"attempt {self.request.retries + 1}: {exc}",
            },
        )
        raise
