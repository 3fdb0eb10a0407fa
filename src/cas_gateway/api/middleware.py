"""Request security middleware.

Every request passes, in order, through rate limiting, CSRF validation,
origin validation and route authorization. Each step can short-circuit the
request; security headers are added to every response either way.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from cas_gateway.api.cookies import set_session_cookie
from cas_gateway.core.errors import (
    CsrfInvalid,
    GatewayError,
    OriginInvalid,
    RateLimited,
    SessionError,
)
from cas_gateway.core.security import (
    CSRF_HEADER,
    MUTATING_METHODS,
    SECURITY_HEADERS,
    allowed_request_origins,
    client_ip,
    csrf_tokens_match,
    path_matches,
    request_origin_allowed,
    user_agent,
)
from cas_gateway.services.audit import SecurityEvent, SecurityEventType, Severity, emit
from cas_gateway.services.container import GatewayServices
from cas_gateway.services.session import Session

logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD"})
LOGIN_PAGE = "/login"

CallNext = Callable[[Request], Awaitable[Response]]


def _error_response(error: GatewayError) -> JSONResponse:
    return JSONResponse(error.to_body(), status_code=error.status_code)


def _wants_html(request: Request) -> bool:
    return "text/html" in request.headers.get("accept", "")


class SecurityMiddleware(BaseHTTPMiddleware):
    """Rate limiting, CSRF, origin and session checks in front of every route."""

    def __init__(self, app: ASGIApp, services: GatewayServices) -> None:
        super().__init__(app)
        self.services = services
        self.settings = services.settings

    async def dispatch(self, request: Request, call_next: CallNext) -> Response:
        response = await self._process(request, call_next)
        for name, value in SECURITY_HEADERS.items():
            response.headers[name] = value
        return response

    def _record(
        self,
        request: Request,
        event_type: SecurityEventType,
        severity: Severity,
        description: str,
        **metadata: object,
    ) -> None:
        emit(
            self.services.audit,
            SecurityEvent(
                type=event_type,
                severity=severity,
                description=description,
                ip=client_ip(request),
                user_agent=user_agent(request),
                metadata={"path": request.url.path, "method": request.method, **metadata},
            ),
        )

    async def _process(self, request: Request, call_next: CallNext) -> Response:
        path = request.url.path
        ip = client_ip(request)

        if not self.services.rate_limiter.allow(ip):
            logger.warning("Rate limit exceeded for %s on %s", ip, path)
            self._record(
                request,
                SecurityEventType.RATE_LIMIT_EXCEEDED,
                Severity.MEDIUM,
                f"Rate limit exceeded for IP {ip}",
            )
            return _error_response(RateLimited())

        if request.method in MUTATING_METHODS and path_matches(
            path, self.settings.csrf_protected_paths
        ):
            header_token = request.headers.get(CSRF_HEADER)
            cookie_token = request.cookies.get(self.settings.csrf_cookie_name)
            if not csrf_tokens_match(header_token, cookie_token):
                self._record(
                    request,
                    SecurityEventType.CSRF_ATTACK,
                    Severity.HIGH,
                    "CSRF token validation failed",
                    has_header=bool(header_token),
                    has_cookie=bool(cookie_token),
                )
                return _error_response(CsrfInvalid())

        if request.method not in SAFE_METHODS and path_matches(
            path, self.settings.sensitive_path_prefixes
        ):
            origin = request.headers.get("origin")
            referer = request.headers.get("referer")
            allowed = allowed_request_origins(
                request.headers.get("host"), self.settings.public_app_url
            )
            if not request_origin_allowed(origin, referer, allowed):
                self._record(
                    request,
                    SecurityEventType.SUSPICIOUS_REQUEST,
                    Severity.HIGH,
                    "Invalid request origin",
                    origin=origin or "null",
                    referer=referer or "null",
                )
                return JSONResponse(
                    {"error": "Invalid Request Origin", "code": OriginInvalid.code},
                    status_code=OriginInvalid.status_code,
                )

        if path.startswith("/api/auth"):
            logger.info("Auth API access: %s %s from %s", request.method, path, ip)

        if path_matches(path, self.settings.public_path_prefixes):
            return await call_next(request)
        return await self._authorize(request, call_next)

    async def _authorize(self, request: Request, call_next: CallNext) -> Response:
        issuer = self.services.session_issuer
        token = request.cookies.get(self.settings.session_cookie_name)
        session: Session | None = None
        if token:
            try:
                session = issuer.verify(token)
            except SessionError as err:
                self._record(
                    request,
                    SecurityEventType.INVALID_TOKEN,
                    Severity.LOW,
                    f"Session cookie rejected: {err.detail}",
                )

        if session is None:
            if not self.settings.require_auth:
                request.state.session = None
                return await call_next(request)
            self._record(
                request,
                SecurityEventType.UNAUTHORIZED_ACCESS,
                Severity.LOW,
                f"Unauthenticated access to {request.url.path}",
            )
            if _wants_html(request):
                return RedirectResponse(LOGIN_PAGE, status_code=303)
            return _error_response(SessionError())

        refreshed: Session | None = None
        if issuer.needs_refresh(session):
            refreshed = session = issuer.refresh(session)
        request.state.session = session
        response = await call_next(request)
        if refreshed is not None:
            set_session_cookie(response, self.settings, refreshed)
        return response
