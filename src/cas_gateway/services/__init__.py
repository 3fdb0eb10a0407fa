# src/cas_gateway/services/__init__.py
"""Login protocol services for the CAS gateway."""

from .audit import AuditSink, MemoryAuditSink, SecurityEvent, SecurityEventType, Severity
from .container import GatewayServices, build_services
from .identity import Identity, IdentityPolicy
from .orchestrator import CallbackOrchestrator, LoginOutcome, LoginPhase
from .rate_limit import InMemoryRateLimiter, RateLimiter
from .replay import LoginState, ReplayGuard, ReplayVerdict
from .session import Session, SessionIssuer
from .ticket import TicketValidator

__all__ = [
    "AuditSink", "MemoryAuditSink", "SecurityEvent", "SecurityEventType", "Severity",
    "GatewayServices", "build_services",
    "Identity", "IdentityPolicy",
    "CallbackOrchestrator", "LoginOutcome", "LoginPhase",
    "InMemoryRateLimiter", "RateLimiter",
    "LoginState", "ReplayGuard", "ReplayVerdict",
    "Session", "SessionIssuer",
    "TicketValidator",
]
