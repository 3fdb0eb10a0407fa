"""Login protocol state machine.

One :class:`CallbackOrchestrator` drives every login attempt from the first
redirect to CAS until a session exists (or the attempt fails). Two callback
shapes are accepted:

* :class:`TicketCallback` - CAS redirected back with a service ticket.
* :class:`LegacyUsernameCallback` - the older two-hop flow where the browser
  posts back the ``cas_user``/``state``/``timestamp`` hand-off it received
  from the ticket step. Kept until CAS-only sign-in is confirmed sufficient.

Failures never escape ``handle_callback``: they come back as a ``FAILED``
:class:`LoginOutcome` carrying the typed error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Literal
from urllib.parse import urlencode

from cas_gateway.core.errors import (
    ConfigurationError,
    GatewayError,
    LoginExpired,
    StateInvalid,
    StateMissing,
    TicketFormatInvalid,
    TicketMissing,
    UpstreamError,
)
from cas_gateway.core.security import redact_ticket
from cas_gateway.services.audit import (
    AuditSink,
    SecurityEvent,
    SecurityEventType,
    Severity,
    emit,
)
from cas_gateway.services.identity import Identity, IdentityPolicy
from cas_gateway.services.replay import LoginState, ReplayGuard, ReplayVerdict
from cas_gateway.services.session import Session, SessionIssuer
from cas_gateway.services.ticket import ClientInfo, TicketValidator, check_ticket_format

logger = logging.getLogger(__name__)

CallbackMode = Literal["redirect", "session"]


class LoginPhase(str, Enum):
    IDLE = "idle"
    AWAITING_CAS_REDIRECT = "awaiting_cas_redirect"
    AWAITING_TICKET = "awaiting_ticket"
    VALIDATING = "validating"
    ISSUING = "issuing"
    COMPLETE = "complete"
    FAILED = "failed"


TERMINAL_PHASES = frozenset({LoginPhase.COMPLETE, LoginPhase.FAILED})


@dataclass(frozen=True)
class TicketCallback:
    ticket: str | None


@dataclass(frozen=True)
class LegacyUsernameCallback:
    username: str | None
    state: str | None
    timestamp: str | int | None


LoginCallback = TicketCallback | LegacyUsernameCallback


@dataclass(frozen=True)
class LoginRedirect:
    url: str
    login_state: LoginState


@dataclass(frozen=True)
class LoginHandoff:
    """Parameters the legacy flow passes back to the login page."""

    username: str
    state: str
    timestamp: int

    def query(self) -> str:
        return urlencode(
            {
                "cas_user": self.username,
                "cas_login": "success",
                "state": self.state,
                "timestamp": str(self.timestamp),
            }
        )


@dataclass
class LoginAttempt:
    """Phase history of a single attempt."""

    phase: LoginPhase = LoginPhase.IDLE
    history: list[LoginPhase] = field(default_factory=lambda: [LoginPhase.IDLE])

    def advance(self, phase: LoginPhase) -> None:
        if self.phase in TERMINAL_PHASES:
            raise RuntimeError(f"Login attempt already finished in phase {self.phase.value}")
        self.phase = phase
        self.history.append(phase)


@dataclass(frozen=True)
class LoginOutcome:
    """Terminal result of a login attempt."""

    phase: LoginPhase
    attempt: LoginAttempt
    identity: Identity | None = None
    session: Session | None = None
    handoff: LoginHandoff | None = None
    error: GatewayError | None = None

    @property
    def ok(self) -> bool:
        return self.phase is LoginPhase.COMPLETE

    @property
    def code(self) -> str | None:
        return self.error.code if self.error is not None else None


def _failure_severity(error: GatewayError) -> Severity:
    # Missing credentials are noise; anything that looks tampered with is not.
    if isinstance(error, (TicketMissing, StateMissing, ConfigurationError, UpstreamError)):
        return Severity.LOW
    return Severity.MEDIUM


class CallbackOrchestrator:
    """Tie ReplayGuard, TicketValidator, IdentityPolicy and SessionIssuer together."""

    def __init__(
        self,
        *,
        replay_guard: ReplayGuard,
        session_issuer: SessionIssuer,
        ticket_validator: TicketValidator | None,
        cas_base_url: str | None,
        service_url: str | None,
        validation_service_url: str | None = None,
        identity_policy: IdentityPolicy | None = None,
        audit: AuditSink | None = None,
        mode: CallbackMode = "redirect",
    ) -> None:
        self._replay = replay_guard
        self._sessions = session_issuer
        self._validator = ticket_validator
        self._cas_base_url = cas_base_url.rstrip("/") if cas_base_url else None
        self._service_url = service_url
        # The service URL sent to serviceValidate must match the one the browser used.
        self._validation_service_url = validation_service_url or service_url
        self._policy = identity_policy or IdentityPolicy()
        self._audit = audit
        self.mode = mode

    # --- Idle -> AwaitingCASRedirect --------------------------------------------------

    def initiate_login(self) -> LoginRedirect:
        """Start an attempt: mint a login state and build the CAS login URL.

        Raises:
            ConfigurationError: CAS base or service URL is not configured.
        """
        if not self._cas_base_url or not self._service_url:
            raise ConfigurationError("CAS base URL or service URL is not configured")
        login_state = self._replay.issue()
        url = f"{self._cas_base_url}/login?{urlencode({'service': self._service_url})}"
        logger.info("Redirecting to CAS login: %s", url)
        return LoginRedirect(url=url, login_state=login_state)

    # --- AwaitingTicket -> Validating -> Issuing -> Complete | Failed -----------------

    async def handle_callback(
        self,
        callback: LoginCallback,
        *,
        login_state: LoginState | None = None,
        client: ClientInfo | None = None,
    ) -> LoginOutcome:
        client = client or ClientInfo()
        attempt = LoginAttempt()
        attempt.advance(LoginPhase.AWAITING_TICKET)
        try:
            if isinstance(callback, TicketCallback):
                outcome = await self._ticket_flow(callback, login_state, client, attempt)
            else:
                outcome = self._legacy_flow(callback, client, attempt)
        except GatewayError as err:
            outcome = self._fail(attempt, err, client, callback)
        finally:
            # Replay state is single-use whatever happened above.
            if login_state is not None:
                self._replay.discard(login_state.state)
        return outcome

    async def _ticket_flow(
        self,
        callback: TicketCallback,
        login_state: LoginState | None,
        client: ClientInfo,
        attempt: LoginAttempt,
    ) -> LoginOutcome:
        if not callback.ticket:
            raise TicketMissing()
        reason = check_ticket_format(callback.ticket)
        if reason is not None:
            raise TicketFormatInvalid(reason)
        if self._validator is None or not self._validation_service_url:
            raise ConfigurationError("CAS server URL or service URL is not configured")

        if login_state is not None:
            self._require_fresh(login_state.state, login_state.issued_at)
        elif self.mode == "session":
            raise StateMissing("Ticket callback arrived without a login state")

        attempt.advance(LoginPhase.VALIDATING)
        cas_user = await self._validator.validate(
            callback.ticket,
            self._validation_service_url,
            client=client,
        )
        identity = self._policy.require(cas_user.username)

        attempt.advance(LoginPhase.ISSUING)
        if self.mode == "session":
            session = self._sessions.issue(identity)
            return self._complete(attempt, identity, client, session=session, ticket=callback.ticket)

        handoff_state = self._replay.issue()
        self._replay.bind(handoff_state, identity.username)
        handoff = LoginHandoff(
            username=identity.username,
            state=handoff_state.state,
            timestamp=handoff_state.issued_at,
        )
        return self._complete(attempt, identity, client, handoff=handoff, ticket=callback.ticket)

    def _legacy_flow(
        self,
        callback: LegacyUsernameCallback,
        client: ClientInfo,
        attempt: LoginAttempt,
    ) -> LoginOutcome:
        if not callback.state or callback.timestamp is None or callback.timestamp == "":
            raise StateMissing("Legacy sign-in without state or timestamp")

        bound_username = self._replay.take_binding(callback.state)
        self._require_fresh(callback.state, callback.timestamp)

        attempt.advance(LoginPhase.VALIDATING)
        # Accompanying parameters are only trusted once the state checked out.
        if bound_username is None or bound_username != callback.username:
            raise StateInvalid("Login state was not issued for this username")
        identity = self._policy.require(callback.username)

        attempt.advance(LoginPhase.ISSUING)
        session = self._sessions.issue(identity)
        return self._complete(attempt, identity, client, session=session)

    def _require_fresh(self, state: str, issued_at: str | int) -> None:
        verdict = self._replay.consume(state, issued_at)
        if verdict is ReplayVerdict.EXPIRED:
            raise LoginExpired("Login state expired or already used")
        if verdict is ReplayVerdict.MALFORMED:
            raise StateInvalid("Login state is malformed")

    def _complete(
        self,
        attempt: LoginAttempt,
        identity: Identity,
        client: ClientInfo,
        *,
        session: Session | None = None,
        handoff: LoginHandoff | None = None,
        ticket: str | None = None,
    ) -> LoginOutcome:
        attempt.advance(LoginPhase.COMPLETE)
        metadata: dict[str, object] = {"authMethod": "CAS", "mode": self.mode}
        if ticket:
            metadata["ticket"] = redact_ticket(ticket)
        emit(
            self._audit,
            SecurityEvent(
                type=SecurityEventType.LOGIN_SUCCESS,
                severity=Severity.LOW,
                description=f"User {identity.username} successfully authenticated via CAS",
                ip=client.ip,
                user_agent=client.user_agent,
                subject_id=identity.username,
                metadata=metadata,
            ),
        )
        logger.info("Login attempt complete for %s (%s)", identity.username, self.mode)
        return LoginOutcome(
            phase=LoginPhase.COMPLETE,
            attempt=attempt,
            identity=identity,
            session=session,
            handoff=handoff,
        )

    def _fail(
        self,
        attempt: LoginAttempt,
        error: GatewayError,
        client: ClientInfo,
        callback: LoginCallback,
    ) -> LoginOutcome:
        attempt.advance(LoginPhase.FAILED)
        logger.warning("Login attempt failed: code=%s detail=%s", error.code, error.detail)
        metadata: dict[str, object] = {"code": error.code, "error": error.detail}
        if isinstance(callback, TicketCallback):
            metadata["ticket"] = redact_ticket(callback.ticket)
        emit(
            self._audit,
            SecurityEvent(
                type=SecurityEventType.LOGIN_FAILURE,
                severity=_failure_severity(error),
                description=f"Login attempt failed: {error.code}",
                ip=client.ip,
                user_agent=client.user_agent,
                metadata=metadata,
            ),
        )
        return LoginOutcome(phase=LoginPhase.FAILED, attempt=attempt, error=error)
