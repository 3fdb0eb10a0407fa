"""CAS service ticket validation."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

import httpx

from cas_gateway import __version__
from cas_gateway.core.errors import (
    CasCommunicationError,
    CasRejected,
    CasTimeout,
    GatewayError,
    MalformedCasResponse,
    TicketFormatInvalid,
)
from cas_gateway.core.security import redact_ticket
from cas_gateway.services.audit import (
    AuditSink,
    SecurityEvent,
    SecurityEventType,
    Severity,
    emit,
)
from cas_gateway.services.cas_envelope import (
    CasFailure,
    CasMalformed,
    EnvelopeParser,
    RegexEnvelopeParser,
)

logger = logging.getLogger(__name__)

TICKET_PATTERN = re.compile(r"^ST-[A-Za-z0-9_-]+$")
TICKET_MIN_LENGTH = 10
TICKET_MAX_LENGTH = 256
DEFAULT_TIMEOUT_SECONDS = 10.0


@dataclass(frozen=True)
class ClientInfo:
    """Who triggered the validation, for logs and audit events."""

    ip: str = "unknown"
    user_agent: str = "unknown"


@dataclass(frozen=True)
class CasUser:
    """Username and attributes returned by CAS; not yet checked by IdentityPolicy."""

    username: str
    attributes: dict[str, list[str]] = field(default_factory=dict)


def check_ticket_format(ticket: str | None) -> str | None:
    """Return the reason ``ticket`` is unacceptable, or None when it is well formed."""
    if not ticket:
        return "Ticket is required"
    if len(ticket) < TICKET_MIN_LENGTH or len(ticket) > TICKET_MAX_LENGTH:
        return "Invalid ticket length"
    if TICKET_PATTERN.fullmatch(ticket) is None:
        return "Invalid ticket format"
    return None


class TicketValidator:
    """Exchange a single-use CAS service ticket for a username.

    The ticket is never cached and the CAS call is never retried: CAS may
    already have consumed a ticket whose request timed out, and a retry would
    come back as ``INVALID_TICKET``.
    """

    def __init__(
        self,
        cas_base_url: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        audit: AuditSink | None = None,
        parser: EnvelopeParser | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        verify: str | bool = True,
    ) -> None:
        self.cas_base_url = cas_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._audit = audit
        self._parser = parser or RegexEnvelopeParser()
        self._transport = transport
        self._verify = verify

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_seconds),
            transport=self._transport,
            verify=self._verify,
            headers={
                "User-Agent": f"cas-gateway/{__version__}",
                "Accept": "application/xml, text/xml",
                "Cache-Control": "no-cache",
            },
        )

    def _failure(self, ticket: str, reason: str, client: ClientInfo) -> None:
        logger.warning(
            "CAS ticket validation failed: ticket=%s reason=%s ip=%s",
            redact_ticket(ticket),
            reason,
            client.ip,
        )
        emit(
            self._audit,
            SecurityEvent(
                type=SecurityEventType.CAS_VALIDATION_FAILURE,
                severity=Severity.MEDIUM,
                description=f"CAS ticket validation failed: {reason}",
                ip=client.ip,
                user_agent=client.user_agent,
                metadata={"ticket": redact_ticket(ticket), "error": reason},
            ),
        )

    async def validate(
        self,
        ticket: str,
        service_url: str,
        *,
        client: ClientInfo | None = None,
    ) -> CasUser:
        """Validate ``ticket`` for ``service_url``.

        Raises:
            TicketFormatInvalid: The ticket fails the local format policy (no network call).
            CasTimeout: CAS did not answer within the timeout.
            CasCommunicationError: CAS was unreachable or answered with a non-2xx status.
            CasRejected: CAS returned an authentication failure envelope.
            MalformedCasResponse: The body was neither envelope, or success had no user.
        """
        client = client or ClientInfo()
        reason = check_ticket_format(ticket)
        if reason is not None:
            self._failure(ticket, f"Invalid ticket format: {reason}", client)
            raise TicketFormatInvalid(reason)

        emit(
            self._audit,
            SecurityEvent(
                type=SecurityEventType.CAS_VALIDATION_START,
                severity=Severity.LOW,
                description="CAS ticket validation started",
                ip=client.ip,
                user_agent=client.user_agent,
                metadata={"ticket": redact_ticket(ticket)},
            ),
        )

        try:
            body = await self._fetch(ticket, service_url)
            envelope = self._parser.parse(body)
            if isinstance(envelope, CasMalformed):
                logger.error(
                    "Invalid CAS response: %s (length=%d, preview=%r)",
                    envelope.reason,
                    len(body),
                    body[:200],
                )
                raise MalformedCasResponse(envelope.reason)
            if isinstance(envelope, CasFailure):
                raise CasRejected(envelope.code, envelope.message)
        except GatewayError as err:
            self._failure(ticket, err.detail, client)
            raise

        logger.info("CAS ticket validation successful: ticket=%s", redact_ticket(ticket))
        return CasUser(username=envelope.user, attributes=envelope.attributes)

    async def _fetch(self, ticket: str, service_url: str) -> str:
        url = f"{self.cas_base_url}/serviceValidate"
        try:
            async with self._client() as http:
                response = await http.get(url, params={"ticket": ticket, "service": service_url})
        except httpx.TimeoutException as exc:
            raise CasTimeout("CAS server timeout") from exc
        except httpx.HTTPError as exc:
            raise CasCommunicationError(f"Communication error: {exc}") from exc

        if not response.is_success:
            raise CasCommunicationError(
                f"CAS server responded with status: {response.status_code}",
                upstream_status=response.status_code,
            )
        logger.debug(
            "Received response from CAS server (status=%d, length=%d)",
            response.status_code,
            len(response.text),
        )
        return response.text
