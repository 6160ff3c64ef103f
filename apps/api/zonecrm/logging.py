"""JSON log lines carrying the request correlation id.

Only whitelisted ``extra`` keys reach the output; anything else passed by a
caller (tokens, payloads) is dropped.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from zonecrm.context import get_correlation_id


_REQUEST_FIELDS = frozenset({"method", "path", "status_code", "duration_ms"})
_AUTHZ_FIELDS = frozenset(
    {
        "user_id",
        "zone_id",
        "target_user_id",
        "entity_type",
        "entity_id",
        "action",
        "capability",
        "reason",
        "kind",
        "audit_id",
    }
)
_LIFECYCLE_FIELDS = frozenset({"zone_access_mode", "audit_dispatch", "error"})
LOGGED_FIELDS = _REQUEST_FIELDS | _AUTHZ_FIELDS | _LIFECYCLE_FIELDS

_MAX_ERROR_LENGTH = 500
_default_factory = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _default_factory(*args, **kwargs)
    if getattr(record, "correlation_id", None) is None:
        record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        fields: dict[str, Any] = {key: value for key, value in vars(record).items() if key in LOGGED_FIELDS}
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:_MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
            "fields": fields,
        }
        return json.dumps(payload, default=str)


def configure_logging(level_name: str = "INFO") -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_zonecrm_configured", False):
        return

    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter())

    root_logger.handlers.clear()
    root_logger.setLevel(level)
    root_logger.addHandler(handler)
    logging.setLogRecordFactory(_record_factory)
    root_logger._zonecrm_configured = True  # type: ignore[attr-defined]
