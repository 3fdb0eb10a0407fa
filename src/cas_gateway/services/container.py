"""Construction of the gateway's collaborators from settings.

Nothing in the gateway reaches for a module-level singleton at request time;
``build_services`` creates every component once and the app keeps the result
on ``app.state.services``. Tests pass their own sink, limiter or CAS transport.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import httpx

from cas_gateway.core.settings import Settings
from cas_gateway.db.session import create_db_engine, create_session_factory, create_tables
from cas_gateway.services.audit import (
    AuditSink,
    FanOutAuditSink,
    LoggingAuditSink,
    MemoryAuditSink,
    SqlAuditSink,
)
from cas_gateway.services.identity import IdentityPolicy
from cas_gateway.services.orchestrator import CallbackOrchestrator
from cas_gateway.services.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from cas_gateway.services.replay import (
    InMemoryReplayStore,
    RedisReplayStore,
    ReplayGuard,
    ReplayStore,
)
from cas_gateway.services.session import SessionIssuer
from cas_gateway.services.ticket import TicketValidator

logger = logging.getLogger(__name__)


@dataclass
class GatewayServices:
    settings: Settings
    audit: AuditSink
    rate_limiter: RateLimiter
    replay_guard: ReplayGuard
    session_issuer: SessionIssuer
    identity_policy: IdentityPolicy
    ticket_validator: TicketValidator | None
    orchestrator: CallbackOrchestrator


def build_audit_sink(settings: Settings) -> AuditSink:
    if settings.audit_sink == "memory":
        return MemoryAuditSink(settings.audit_buffer_size)
    if settings.audit_sink == "database":
        engine = create_db_engine(settings.database_url, echo=settings.sql_debug)
        create_tables(engine)
        # Database rows plus the log line operators already watch.
        return FanOutAuditSink([SqlAuditSink(create_session_factory(engine)), LoggingAuditSink()])
    return LoggingAuditSink()


def build_rate_limiter(settings: Settings) -> RateLimiter:
    if settings.rate_limit_backend == "redis":
        return RedisRateLimiter.from_url(
            settings.redis_url,
            settings.rate_limit_requests,
            settings.rate_limit_window_seconds,
        )
    return InMemoryRateLimiter(settings.rate_limit_requests, settings.rate_limit_window_seconds)


def build_replay_store(settings: Settings) -> ReplayStore:
    if settings.replay_backend == "redis":
        return RedisReplayStore.from_url(settings.redis_url)
    return InMemoryReplayStore()


def build_services(
    settings: Settings,
    *,
    audit_sink: AuditSink | None = None,
    rate_limiter: RateLimiter | None = None,
    replay_store: ReplayStore | None = None,
    cas_transport: httpx.AsyncBaseTransport | None = None,
) -> GatewayServices:
    """Wire every gateway component for ``settings``."""
    audit = audit_sink or build_audit_sink(settings)
    replay_guard = ReplayGuard(
        replay_store or build_replay_store(settings),
        max_age_ms=settings.login_state_max_age_seconds * 1000,
    )
    session_issuer = SessionIssuer(
        settings.session_secret,
        algorithm=settings.jwt_algorithm,
        max_lifetime_seconds=settings.session_max_age_seconds,
        idle_timeout_seconds=settings.session_idle_timeout_seconds,
        update_age_seconds=settings.session_update_age_seconds,
    )
    identity_policy = IdentityPolicy()

    ticket_validator: TicketValidator | None = None
    if settings.cas_base_url:
        ticket_validator = TicketValidator(
            settings.cas_base_url,
            timeout_seconds=settings.cas_timeout_seconds,
            audit=audit,
            transport=cas_transport,
            verify=settings.cas_ca_cert or True,
        )
    else:
        logger.warning("CAS_BASE_URL is not set; ticket validation will fail with CONFIG_ERROR")

    orchestrator = CallbackOrchestrator(
        replay_guard=replay_guard,
        session_issuer=session_issuer,
        ticket_validator=ticket_validator,
        cas_base_url=settings.browser_cas_base_url,
        service_url=settings.browser_cas_service_url,
        validation_service_url=settings.cas_service_url,
        identity_policy=identity_policy,
        audit=audit,
        mode=settings.cas_callback_mode,
    )

    return GatewayServices(
        settings=settings,
        audit=audit,
        rate_limiter=rate_limiter or build_rate_limiter(settings),
        replay_guard=replay_guard,
        session_issuer=session_issuer,
        identity_policy=identity_policy,
        ticket_validator=ticket_validator,
        orchestrator=orchestrator,
    )
