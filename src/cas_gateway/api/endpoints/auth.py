"""Session endpoints: CSRF token issue, legacy sign-in, sign-out and session lookup."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from cas_gateway.api.cookies import clear_session_cookie, set_csrf_cookie, set_session_cookie
from cas_gateway.api.dependencies import ClientDep, CurrentSessionDep, ServicesDep
from cas_gateway.core.errors import SessionError
from cas_gateway.core.security import generate_csrf_token
from cas_gateway.schemas.auth import (
    CsrfResponse,
    ErrorResponse,
    SessionResponse,
    SignInRequest,
    SignInResponse,
    SignOutResponse,
)
from cas_gateway.services.audit import SecurityEvent, SecurityEventType, Severity, emit
from cas_gateway.services.orchestrator import LegacyUsernameCallback
from cas_gateway.services.session import Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


def _session_body(session: Session) -> SessionResponse:
    return SessionResponse(
        subject_id=session.subject_id,
        display_name=session.display_name,
        issued_at=session.issued_at,
        expires_at=session.expires_at,
    )


@router.get("/csrf", response_model=CsrfResponse)
async def issue_csrf_token(services: ServicesDep) -> JSONResponse:
    """Issue a fresh CSRF token and the cookie it must be echoed against."""
    token = generate_csrf_token()
    response = JSONResponse(CsrfResponse(csrf_token=token).model_dump(by_alias=True))
    set_csrf_cookie(response, services.settings, token)
    return response


@router.post(
    "/signin",
    response_model=SignInResponse,
    responses={400: {"model": ErrorResponse}},
)
async def sign_in(
    payload: SignInRequest,
    services: ServicesDep,
    client: ClientDep,
) -> JSONResponse:
    """Complete a legacy CAS login from the hand-off parameters.

    The state must have been issued by this gateway for exactly this username
    and still be fresh; it can only be used once.
    """
    outcome = await services.orchestrator.handle_callback(
        LegacyUsernameCallback(
            username=payload.cas_user,
            state=payload.state,
            timestamp=payload.timestamp,
        ),
        client=client,
    )
    if outcome.error is not None:
        return JSONResponse(outcome.error.to_body(), status_code=outcome.error.status_code)
    if outcome.session is None:
        raise RuntimeError("Legacy sign-in completed without a session")

    body = SignInResponse(session=_session_body(outcome.session))
    response = JSONResponse(body.model_dump())
    set_session_cookie(response, services.settings, outcome.session)
    return response


@router.post("/signout", response_model=SignOutResponse)
async def sign_out(request: Request, services: ServicesDep, client: ClientDep) -> JSONResponse:
    """Clear the session cookie and record the logout."""
    subject_id: str | None = None
    token = request.cookies.get(services.settings.session_cookie_name)
    if token:
        try:
            subject_id = services.session_issuer.verify(token).subject_id
        except SessionError:
            subject_id = None

    emit(
        services.audit,
        SecurityEvent(
            type=SecurityEventType.LOGOUT,
            severity=Severity.LOW,
            description=f"User {subject_id or 'anonymous'} signed out",
            ip=client.ip,
            user_agent=client.user_agent,
            subject_id=subject_id,
        ),
    )
    logger.info("Sign-out for %s", subject_id or "anonymous")
    response = JSONResponse(SignOutResponse().model_dump())
    clear_session_cookie(response, services.settings)
    return response


@router.get(
    "/session",
    response_model=SessionResponse,
    responses={401: {"model": ErrorResponse}},
)
async def get_session(session: CurrentSessionDep) -> SessionResponse:
    """Return the caller's current session."""
    return _session_body(session)
