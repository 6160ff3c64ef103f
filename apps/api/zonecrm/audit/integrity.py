"""SHA-256 checksums over the canonical content of an audit row.

Each row is hashed on its own; rows are not chained to their predecessor.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from zonecrm.audit.models import AuditLog


CHECKSUM_FIELDS = (
    "zone_id",
    "user_id",
    "entity_type",
    "entity_id",
    "action",
    "old_values",
    "new_values",
    "ip_address",
    "user_agent",
    "correlation_id",
    "created_at",
)


def _normalize_timestamp(value: Any) -> str | None:
    # drivers disagree on tz-awareness when reading back; hash naive UTC
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat()
    return str(value)


def canonical_content(values: Mapping[str, Any]) -> str:
    payload = {key: values.get(key) for key in CHECKSUM_FIELDS}
    payload["created_at"] = _normalize_timestamp(payload["created_at"])
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_checksum(values: Mapping[str, Any]) -> str:
    return hashlib.sha256(canonical_content(values).encode("utf-8")).hexdigest()


def row_content(row: AuditLog) -> dict[str, Any]:
    return {key: getattr(row, key) for key in CHECKSUM_FIELDS}


def verify_row(row: AuditLog) -> bool:
    return hmac.compare_digest(row.checksum, compute_checksum(row_content(row)))
