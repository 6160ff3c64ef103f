from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest
from sqlalchemy import func, select, text, update
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.exc import OperationalError

from zonecrm.audit import tasks
from zonecrm.audit.dispatch import CeleryActivityDispatcher, InlineActivityDispatcher
from zonecrm.audit.errors import AuditImmutableError
from zonecrm.audit.models import AuditLog
from zonecrm.audit.schemas import AuditEntry
from zonecrm.audit.sink import AuditSink
from zonecrm.context import reset_correlation_id, set_correlation_id


def _unavailable():
    raise OperationalError("INSERT", {}, Exception("database is unavailable"))


def _entry(**overrides: Any) -> AuditEntry:
    values: dict[str, Any] = {
        "zone_id": 3,
        "user_id": 7,
        "entity_type": "lead",
        "entity_id": 11,
        "action": "updated",
        "old_values": {"status": "new"},
        "new_values": {"status": "qualified"},
        "ip_address": "10.0.0.8",
        "user_agent": "pytest",
    }
    values.update(overrides)
    return AuditEntry(**values)


@pytest.fixture()
def sink(session_factory: sessionmaker[Session]) -> AuditSink:
    return AuditSink(session_factory, max_limit=5)


def test_log_persists_row_with_checksum(sink: AuditSink, db_session: Session) -> None:
    token = set_correlation_id("corr-audit-1")
    try:
        entry_id = sink.log(_entry())
    finally:
        reset_correlation_id(token)

    assert entry_id is not None
    row = db_session.get(AuditLog, entry_id)
    assert row is not None
    assert row.entity_id == "11"
    assert row.correlation_id == "corr-audit-1"
    assert len(row.checksum) == 64
    assert sink.verify(entry_id) is True


def test_user_agent_is_truncated(sink: AuditSink, db_session: Session) -> None:
    entry_id = sink.log(_entry(user_agent="x" * 900))

    row = db_session.get(AuditLog, entry_id)
    assert row is not None
    assert len(row.user_agent) == 512
    assert sink.verify(entry_id) is True


def test_raw_update_is_detected_by_verify(sink: AuditSink, db_session: Session) -> None:
    entry_id = sink.log(_entry())

    db_session.execute(
        text("UPDATE audit_logs SET new_values = :values WHERE id = :id"),
        {"values": '{"status": "lost"}', "id": entry_id},
    )
    db_session.commit()

    assert sink.verify(entry_id) is False
    assert sink.verify(entry_id + 1000) is None


def test_orm_update_and_delete_are_rejected(sink: AuditSink, db_session: Session) -> None:
    entry_id = sink.log(_entry())
    row = db_session.get(AuditLog, entry_id)
    assert row is not None

    row.action = "rewritten"
    with pytest.raises(AuditImmutableError):
        db_session.commit()
    db_session.rollback()

    row = db_session.get(AuditLog, entry_id)
    db_session.delete(row)
    with pytest.raises(AuditImmutableError):
        db_session.commit()
    db_session.rollback()

    assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 1
    assert sink.verify(entry_id) is True


def test_core_update_bypasses_mapper_guard_but_fails_verify(sink: AuditSink, db_session: Session) -> None:
    entry_id = sink.log(_entry())

    db_session.execute(update(AuditLog).where(AuditLog.id == entry_id).values(action="rewritten"))
    db_session.commit()

    assert db_session.scalar(select(AuditLog.action).where(AuditLog.id == entry_id)) == "rewritten"
    assert sink.verify(entry_id) is False


def test_log_denial_records_reason_and_details(sink: AuditSink, db_session: Session) -> None:
    sink.log_denial(
        zone_id=5,
        user_id=9,
        reason="Cross-zone access denied",
        entity_type="lead",
        entity_id=77,
        ip_address="192.168.1.4",
        user_agent="browser",
        details={"kind": "zone_mismatch"},
    )

    rows = db_session.scalars(select(AuditLog)).all()
    assert len(rows) == 1
    assert rows[0].action == "denied"
    assert rows[0].new_values == {"kind": "zone_mismatch", "reason": "Cross-zone access denied"}
    assert rows[0].entity_id == "77"
    assert rows[0].ip_address == "192.168.1.4"


def test_writes_never_raise_when_storage_is_down() -> None:
    sink = AuditSink(_unavailable)

    assert sink.log(_entry()) is None
    sink.log_denial(zone_id=1, user_id=1, reason="Cross-zone access denied", entity_type="lead")
    sink.log_activity(user_id=1, entity_type="lead", action="created", zone_id=1, entity_id=1)

    assert sink.entity_logs("lead", 1) == []
    assert sink.user_actions(1) == []
    assert sink.zone_logs(1) == []
    assert sink.access_denials() == []


def test_store_propagates_storage_errors() -> None:
    with pytest.raises(OperationalError):
        AuditSink(_unavailable).store(_entry())


def test_queries_filter_and_order_newest_first(sink: AuditSink) -> None:
    base = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    first = sink.log(_entry(created_at=base))
    second = sink.log(_entry(created_at=base + timedelta(minutes=5)))
    sink.log(_entry(entity_id=12, zone_id=4, user_id=8, created_at=base + timedelta(minutes=1)))

    logs = sink.entity_logs("lead", 11)
    assert [row.id for row in logs] == [second, first]
    assert [row.id for row in sink.user_actions(7)] == [second, first]
    assert [row.id for row in sink.zone_logs(3)] == [second, first]
    assert sink.entity_logs("lead", "11")[0].new_values == {"status": "qualified"}


def test_same_timestamp_orders_by_id(sink: AuditSink) -> None:
    moment = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    ids = [sink.log(_entry(created_at=moment)) for _ in range(3)]

    assert [row.id for row in sink.entity_logs("lead", 11)] == list(reversed(ids))


def test_limit_is_clamped(sink: AuditSink) -> None:
    for _ in range(8):
        sink.log(_entry())

    assert len(sink.entity_logs("lead", 11, limit=100)) == 5
    assert len(sink.entity_logs("lead", 11, limit=0)) == 1
    assert len(sink.entity_logs("lead", 11, limit=-3)) == 1
    assert len(sink.entity_logs("lead", 11, limit=2)) == 2


def test_access_denials_respects_date_range(sink: AuditSink) -> None:
    base = datetime(2026, 5, 10, 8, 0, tzinfo=timezone.utc)
    early = sink.log(_entry(action="denied", created_at=base - timedelta(days=2)))
    inside = sink.log(_entry(action="denied", created_at=base))
    sink.log(_entry(action="updated", created_at=base))
    late = sink.log(_entry(action="denied", created_at=base + timedelta(days=2)))

    window = sink.access_denials(base - timedelta(days=1), base + timedelta(days=1))
    assert [row.id for row in window] == [inside]
    assert [row.id for row in sink.access_denials()] == [late, inside, early]
    assert [row.id for row in sink.access_denials(from_date=base)] == [late, inside]


def test_activity_is_written_inline_without_dispatcher(sink: AuditSink, db_session: Session) -> None:
    token = set_correlation_id("corr-activity")
    try:
        sink.log_activity(
            user_id=2,
            entity_type="zone",
            action="created",
            zone_id=1,
            entity_id=1,
            new_values={"code": "HQ", "opened": datetime(2026, 1, 1, tzinfo=timezone.utc)},
        )
    finally:
        reset_correlation_id(token)

    row = db_session.scalar(select(AuditLog))
    assert row is not None
    assert row.correlation_id == "corr-activity"
    assert row.new_values == {"code": "HQ", "opened": "2026-01-01 00:00:00+00:00"}


def test_inline_dispatcher_writes_through(session_factory: sessionmaker[Session], db_session: Session) -> None:
    sink = AuditSink(session_factory, dispatcher=InlineActivityDispatcher())
    sink.log_activity(user_id=2, entity_type="zone", action="updated", zone_id=1, entity_id=1)

    assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 1


class _RecordingTask:
    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []

    def apply_async(self, args: list[Any]) -> None:
        self.calls.append(args[0])


class _BrokerDown:
    def apply_async(self, args: list[Any]) -> None:
        raise ConnectionError("broker unreachable")


def test_celery_dispatcher_enqueues_payload(session_factory: sessionmaker[Session], db_session: Session) -> None:
    task = _RecordingTask()
    sink = AuditSink(session_factory, dispatcher=CeleryActivityDispatcher(task=task))

    token = set_correlation_id("corr-queued")
    try:
        sink.log_activity(user_id=4, entity_type="role_capability", action="granted", entity_id="manager:lead.assign")
    finally:
        reset_correlation_id(token)

    assert len(task.calls) == 1
    payload = task.calls[0]
    assert payload["entity_id"] == "manager:lead.assign"
    assert payload["correlation_id"] == "corr-queued"
    assert payload["created_at"] is not None
    assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 0


def test_celery_dispatcher_falls_back_to_inline_write(
    session_factory: sessionmaker[Session],
    db_session: Session,
) -> None:
    sink = AuditSink(session_factory, dispatcher=CeleryActivityDispatcher(task=_BrokerDown()))
    sink.log_activity(user_id=4, entity_type="zone", action="created", zone_id=2, entity_id=2)

    row = db_session.scalar(select(AuditLog))
    assert row is not None
    assert row.action == "created"


def test_record_activity_task_stores_entry(
    session_factory: sessionmaker[Session],
    db_session: Session,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(tasks, "SessionLocal", session_factory)
    created_at = datetime(2026, 2, 2, 9, 30, tzinfo=timezone.utc)
    payload = _entry(action="granted", correlation_id="corr-worker", created_at=created_at).model_dump(mode="json")

    result = tasks.record_activity.apply(args=[payload])
    entry_id = result.get()

    row = db_session.get(AuditLog, entry_id)
    assert row is not None
    assert row.correlation_id == "corr-worker"
    assert row.action == "granted"
    assert AuditSink(session_factory).verify(entry_id) is True


def test_denial_labels_are_clipped_to_column_width(sink: AuditSink, db_session: Session) -> None:
    sink.log_denial(zone_id=2, user_id=4, reason="Cross-zone access denied", entity_type="e" * 80, entity_id=9)
    sink.log_denial(zone_id=2, user_id=4, reason="Cross-zone access denied", entity_type="  ")

    rows = db_session.scalars(select(AuditLog).order_by(AuditLog.id)).all()
    assert [row.entity_type for row in rows] == ["e" * 64, "unknown"]
    assert all(sink.verify(row.id) for row in rows)


def test_unbuildable_entry_is_reported_not_raised(
    sink: AuditSink,
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.ERROR, logger="zonecrm.audit")

    sink.log_activity(user_id=1, entity_type=None, action="created", zone_id=1)  # type: ignore[arg-type]
    sink.log_denial(zone_id=1, user_id=1, reason="Cross-zone access denied", entity_type=None)  # type: ignore[arg-type]

    assert db_session.scalar(select(func.count()).select_from(AuditLog)) == 0
    failures = [record for record in caplog.records if record.getMessage() == "audit.write_failed"]
    assert [record.action for record in failures] == ["created", "denied"]
