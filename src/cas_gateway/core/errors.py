"""Error taxonomy for the CAS gateway.

Every failure a login attempt can run into is one of these types. Each carries
the stable ``code`` and HTTP ``status_code`` the API layer returns, plus a
generic ``message`` that is safe to show to the browser. Anything more detailed
(raw CAS bodies, upstream status codes) stays in ``detail`` and only reaches
the logs and the audit sink.
"""

from __future__ import annotations

from fastapi import status


class GatewayError(Exception):
    """Base class for typed gateway failures."""

    code: str = "INTERNAL_ERROR"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    message: str = "Internal server error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.message)
        self.detail = detail or self.message

    def to_body(self) -> dict[str, str]:
        """Return the JSON body sent to clients."""
        return {"error": self.message, "code": self.code}


class ConfigurationError(GatewayError):
    """Raised when required server configuration is missing or unusable."""

    code = "CONFIG_ERROR"
    message = "Server configuration error"


# --- Input errors (4xx, user-correctable) ------------------------------------------


class InputError(GatewayError):
    """Bad or missing request parameters."""

    code = "INVALID_REQUEST"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid request"


class TicketMissing(InputError):
    code = "TICKET_MISSING"
    message = "Ticket parameter is required"


class TicketFormatInvalid(InputError):
    code = "TICKET_INVALID_FORMAT"
    message = "Invalid ticket format"


class StateMissing(InputError):
    code = "STATE_MISSING"
    message = "Login state is missing, please sign in again"


class StateInvalid(InputError):
    code = "STATE_INVALID"
    message = "Security verification failed, please sign in again"


class LoginExpired(InputError):
    code = "LOGIN_EXPIRED"
    message = "Login request has expired, please sign in again"


# --- Upstream errors (CAS unreachable, slow or incoherent) ---------------------------


class UpstreamError(GatewayError):
    """The CAS server could not produce a usable answer."""

    code = "CAS_COMMUNICATION_ERROR"
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Failed to communicate with CAS server"

    def __init__(
        self,
        detail: str | None = None,
        *,
        upstream_status: int | None = None,
        timeout: bool = False,
    ) -> None:
        super().__init__(detail)
        self.upstream_status = upstream_status
        self.timeout = timeout


class CasTimeout(UpstreamError):
    code = "CAS_TIMEOUT"
    status_code = status.HTTP_504_GATEWAY_TIMEOUT
    message = "CAS server request timeout"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail, timeout=True)


class CasCommunicationError(UpstreamError):
    pass


class MalformedCasResponse(UpstreamError):
    code = "CAS_INVALID_RESPONSE"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    message = "Invalid CAS response format"


class CasRejected(GatewayError):
    """The CAS server answered with an authentication failure envelope."""

    status_code = status.HTTP_401_UNAUTHORIZED
    message = "CAS authentication failed"

    def __init__(self, cas_code: str, cas_message: str) -> None:
        super().__init__(f"{cas_code}: {cas_message}")
        self.cas_code = cas_code
        self.cas_message = cas_message

    @property  # type: ignore[override]
    def code(self) -> str:
        return f"CAS_AUTH_FAILED_{self.cas_code}"


# --- Policy violations (logged as security events) -----------------------------------


class PolicyViolation(GatewayError):
    """A request broke a security policy."""

    code = "POLICY_VIOLATION"
    status_code = status.HTTP_403_FORBIDDEN
    message = "Request rejected"


class UsernameInvalid(PolicyViolation):
    code = "USERNAME_INVALID"
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Invalid username format"

    def __init__(self, reason: str, rule: str) -> None:
        super().__init__(reason)
        self.rule = rule


class OriginInvalid(PolicyViolation):
    code = "ORIGIN_INVALID"
    message = "Invalid request origin"


class CsrfInvalid(PolicyViolation):
    code = "CSRF_INVALID"
    message = "CSRF Token Invalid"


class RateLimited(PolicyViolation):
    code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    message = "Too Many Requests"


# --- Session errors (always mean "not authenticated") --------------------------------


class SessionError(GatewayError):
    code = "UNAUTHENTICATED"
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Authentication required"


class SessionSignatureInvalid(SessionError):
    pass


class SessionExpired(SessionError):
    pass


class SessionMalformed(SessionError):
    pass
