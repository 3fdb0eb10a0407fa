# tests/services/test_audit.py
"""Tests for audit sinks."""

import logging

import pytest
from sqlalchemy import select

from cas_gateway.db import create_db_engine, create_session_factory, create_tables, drop_tables
from cas_gateway.models import SecurityEventRecord
from cas_gateway.services.audit import (
    FanOutAuditSink,
    LoggingAuditSink,
    MemoryAuditSink,
    SecurityEvent,
    SecurityEventType,
    Severity,
    SqlAuditSink,
    emit,
)


def _event(
    event_type: SecurityEventType = SecurityEventType.LOGIN_SUCCESS,
    severity: Severity = Severity.LOW,
) -> SecurityEvent:
    return SecurityEvent(
        type=event_type,
        severity=severity,
        description="test event",
        ip="10.0.0.1",
        user_agent="pytest",
        subject_id="alice",
        metadata={"ticket": "ST-abc123X..."},
    )


def test_memory_sink_is_bounded() -> None:
    sink = MemoryAuditSink(max_events=3)
    for _ in range(5):
        sink.record(_event())
    assert len(sink.events) == 3


def test_memory_sink_filters_and_clears() -> None:
    sink = MemoryAuditSink()
    sink.record(_event(SecurityEventType.LOGIN_SUCCESS))
    sink.record(_event(SecurityEventType.CSRF_ATTACK, Severity.HIGH))
    sink.record(_event(SecurityEventType.LOGIN_SUCCESS))

    assert len(sink.of_type(SecurityEventType.LOGIN_SUCCESS)) == 2
    assert [event.type for event in sink.recent(1)] == [SecurityEventType.LOGIN_SUCCESS]
    sink.clear()
    assert sink.events == []


def test_logging_sink_levels(caplog: pytest.LogCaptureFixture) -> None:
    sink = LoggingAuditSink()
    with caplog.at_level(logging.INFO, logger="cas_gateway.audit"):
        sink.record(_event(SecurityEventType.LOGIN_SUCCESS, Severity.LOW))
        sink.record(_event(SecurityEventType.RATE_LIMIT_EXCEEDED, Severity.MEDIUM))
        sink.record(_event(SecurityEventType.CSRF_ATTACK, Severity.HIGH))

    levels = [record.levelno for record in caplog.records]
    assert levels == [logging.INFO, logging.WARNING, logging.ERROR]
    assert "SECURITY ALERT" in caplog.records[-1].getMessage()
    assert caplog.records[-1].security_event["type"] == "CSRF_ATTACK"


def test_emit_swallows_sink_failures(mocker, caplog: pytest.LogCaptureFixture) -> None:
    sink = mocker.Mock()
    sink.record.side_effect = RuntimeError("disk full")

    with caplog.at_level(logging.ERROR):
        emit(sink, _event())

    assert "Audit sink failed" in caplog.text


def test_emit_without_sink_is_noop() -> None:
    emit(None, _event())


def test_fan_out_continues_past_failing_sink(mocker) -> None:
    broken = mocker.Mock()
    broken.record.side_effect = RuntimeError("boom")
    memory = MemoryAuditSink()

    FanOutAuditSink([broken, memory]).record(_event())
    assert len(memory.events) == 1


def test_sql_sink_persists_rows() -> None:
    engine = create_db_engine("sqlite://")
    create_tables(engine)
    factory = create_session_factory(engine)
    sink = SqlAuditSink(factory)

    sink.record(_event(SecurityEventType.CSRF_ATTACK, Severity.HIGH))

    with factory() as db:
        rows = db.scalars(select(SecurityEventRecord)).all()
    assert len(rows) == 1
    row = rows[0]
    assert row.event_type == "CSRF_ATTACK"
    assert row.severity == "HIGH"
    assert row.subject_id == "alice"
    assert row.event_metadata == {"ticket": "ST-abc123X..."}
    drop_tables(engine)
    engine.dispose()


def test_event_as_dict_is_json_friendly() -> None:
    data = _event().as_dict()
    assert data["type"] == "LOGIN_SUCCESS"
    assert data["severity"] == "LOW"
    assert isinstance(data["timestamp"], str)
