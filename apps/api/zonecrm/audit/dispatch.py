from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any, Protocol

from zonecrm.audit.schemas import AuditEntry
from zonecrm.audit.tasks import record_activity
from zonecrm.metrics import observe_audit_dispatch_fallback


logger = logging.getLogger("zonecrm.audit")

Writer = Callable[[AuditEntry], int | None]


class ActivityDispatcher(Protocol):
    """Hands an activity entry to whatever persists it."""

    def dispatch(self, entry: AuditEntry, write: Writer) -> None:
        ...


class InlineActivityDispatcher:
    def dispatch(self, entry: AuditEntry, write: Writer) -> None:
        write(entry)


class CeleryActivityDispatcher:
    """Enqueues the activity task; writes inline when the broker refuses it."""

    def __init__(self, task: Any = None) -> None:
        self._task = task if task is not None else record_activity

    def dispatch(self, entry: AuditEntry, write: Writer) -> None:
        try:
            self._task.apply_async(args=[entry.model_dump(mode="json")])
        except Exception as exc:
            observe_audit_dispatch_fallback()
            logger.warning(
                "audit.dispatch_failed",
                exc_info=True,
                extra={
                    "user_id": entry.user_id,
                    "entity_type": entry.entity_type,
                    "action": entry.action,
                    "error": str(exc),
                },
            )
            write(entry)
