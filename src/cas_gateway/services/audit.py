"""Security event auditing.

Components never talk to a logger singleton for security events; they are
handed an ``AuditSink`` at construction time and call :func:`emit`, which is
fire-and-forget: a broken sink is logged and otherwise ignored so that it can
never change the outcome of a login attempt.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from threading import Lock
from typing import Any, Protocol

from sqlalchemy.orm import Session, sessionmaker

from cas_gateway.models import SecurityEventRecord

logger = logging.getLogger(__name__)
audit_logger = logging.getLogger("cas_gateway.audit")


class SecurityEventType(str, Enum):
    """Kinds of security events recorded by the gateway."""

    LOGIN_SUCCESS = "LOGIN_SUCCESS"
    LOGIN_FAILURE = "LOGIN_FAILURE"
    LOGOUT = "LOGOUT"
    CSRF_ATTACK = "CSRF_ATTACK"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    SUSPICIOUS_REQUEST = "SUSPICIOUS_REQUEST"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"
    INVALID_ORIGIN = "INVALID_ORIGIN"
    INVALID_TOKEN = "INVALID_TOKEN"
    SUSPICIOUS_ACTIVITY = "SUSPICIOUS_ACTIVITY"
    CAS_VALIDATION_START = "CAS_VALIDATION_START"
    CAS_VALIDATION_FAILURE = "CAS_VALIDATION_FAILURE"
    SESSION_HIJACK_ATTEMPT = "SESSION_HIJACK_ATTEMPT"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


ALERT_SEVERITIES = frozenset({Severity.HIGH, Severity.CRITICAL})


@dataclass(frozen=True)
class SecurityEvent:
    """A single append-only audit record."""

    type: SecurityEventType
    severity: Severity
    description: str
    ip: str = "unknown"
    user_agent: str = "unknown"
    subject_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "description": self.description,
            "ip": self.ip,
            "user_agent": self.user_agent,
            "subject_id": self.subject_id,
            "metadata": dict(self.metadata),
            "timestamp": self.timestamp.isoformat(),
        }


class AuditSink(Protocol):
    """Anything that can receive security events."""

    def record(self, event: SecurityEvent) -> None: ...


def emit(sink: AuditSink | None, event: SecurityEvent) -> None:
    """Send ``event`` to ``sink`` without letting sink failures escape."""
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception:
        logger.exception("Audit sink failed to record %s event", event.type.value)


class LoggingAuditSink:
    """Write events to the ``cas_gateway.audit`` logger."""

    def __init__(self, log: logging.Logger | None = None) -> None:
        self._log = log or audit_logger

    def record(self, event: SecurityEvent) -> None:
        extra = {"security_event": event.as_dict()}
        if event.severity in ALERT_SEVERITIES:
            level = logging.ERROR
            message = "SECURITY ALERT %s - %s"
        elif event.severity is Severity.MEDIUM:
            level = logging.WARNING
            message = "Security Event: %s - %s"
        else:
            level = logging.INFO
            message = "Security Event: %s - %s"
        self._log.log(level, message, event.type.value, event.description, extra=extra)


class MemoryAuditSink:
    """Keep the most recent events in a bounded in-process buffer."""

    def __init__(self, max_events: int = 1000) -> None:
        self._events: deque[SecurityEvent] = deque(maxlen=max_events)
        self._lock = Lock()

    def record(self, event: SecurityEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> list[SecurityEvent]:
        with self._lock:
            return list(self._events)

    def recent(self, count: int = 100) -> list[SecurityEvent]:
        with self._lock:
            return list(self._events)[-count:]

    def of_type(self, event_type: SecurityEventType) -> list[SecurityEvent]:
        with self._lock:
            return [event for event in self._events if event.type == event_type]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class SqlAuditSink:
    """Persist each event as a ``security_event`` row."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def record(self, event: SecurityEvent) -> None:
        with self._session_factory() as db:
            db.add(
                SecurityEventRecord(
                    occurred_at=event.timestamp,
                    event_type=event.type.value,
                    severity=event.severity.value,
                    description=event.description,
                    ip=event.ip,
                    user_agent=event.user_agent,
                    subject_id=event.subject_id,
                    event_metadata=dict(event.metadata),
                )
            )
            db.commit()


class FanOutAuditSink:
    """Deliver every event to several sinks; one failing sink does not stop the others."""

    def __init__(self, sinks: Iterable[AuditSink]) -> None:
        self._sinks = list(sinks)

    def record(self, event: SecurityEvent) -> None:
        for sink in self._sinks:
            emit(sink, event)
