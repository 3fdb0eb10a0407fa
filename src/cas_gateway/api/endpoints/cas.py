"""CAS login initiation and ticket validation endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse, RedirectResponse, Response

from cas_gateway.api.cookies import clear_state_cookie, set_session_cookie, set_state_cookie
from cas_gateway.api.dependencies import ClientDep, ServicesDep
from cas_gateway.core.errors import GatewayError, OriginInvalid
from cas_gateway.core.security import origin_of, redact_ticket, referer_allowed
from cas_gateway.schemas.auth import ErrorResponse
from cas_gateway.services.audit import SecurityEvent, SecurityEventType, Severity, emit
from cas_gateway.services.orchestrator import TicketCallback
from cas_gateway.services.replay import LoginState

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/cas", tags=["cas"])

_ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    code: {"model": ErrorResponse}
    for code in (400, 401, 403, 500, 502, 504)
}


def _error(error: GatewayError) -> JSONResponse:
    return JSONResponse(error.to_body(), status_code=error.status_code)


@router.get("/login", status_code=status.HTTP_302_FOUND)
async def cas_login(services: ServicesDep) -> Response:
    """Start a login attempt and send the browser to the CAS login page."""
    redirect = services.orchestrator.initiate_login()
    response = RedirectResponse(redirect.url, status_code=status.HTTP_302_FOUND)
    set_state_cookie(response, services.settings, redirect.login_state)
    return response


@router.api_route(
    "/validate",
    methods=["GET", "POST"],
    status_code=status.HTTP_302_FOUND,
    responses=_ERROR_RESPONSES,
)
async def validate_ticket(
    request: Request,
    services: ServicesDep,
    client: ClientDep,
    ticket: str | None = None,
) -> Response:
    """Exchange the CAS service ticket for a login hand-off or a session.

    Args:
        request: Incoming request (referer and state cookie are read from it)
        services: Gateway service container
        client: Caller address and user agent
        ticket: Service ticket appended by CAS to the service URL

    Returns:
        A redirect to the login page (``redirect`` mode) or to ``/`` with a
        session cookie (``session`` mode); a JSON error body otherwise
    """
    settings = services.settings
    logger.info(
        "CAS validation request: ticket=%s ip=%s",
        redact_ticket(ticket),
        client.ip,
    )

    response: Response
    try:
        referer = request.headers.get("referer")
        allowed_urls = [
            settings.public_app_url,
            settings.cas_base_url,
            settings.public_cas_base_url,
            origin_of(settings.cas_base_url),
        ]
        if not referer_allowed(referer, allowed_urls):
            logger.warning("Invalid referer for CAS validation: %s", referer)
            emit(
                services.audit,
                SecurityEvent(
                    type=SecurityEventType.INVALID_ORIGIN,
                    severity=Severity.MEDIUM,
                    description=f"Invalid request origin for CAS validation: referer={referer}",
                    ip=client.ip,
                    user_agent=client.user_agent,
                    metadata={"endpoint": request.url.path, "casBaseUrl": settings.cas_base_url},
                ),
            )
            response = _error(OriginInvalid(f"Referer {referer} is not allowed"))
        else:
            login_state = LoginState.from_cookie(request.cookies.get(settings.state_cookie_name))
            outcome = await services.orchestrator.handle_callback(
                TicketCallback(ticket),
                login_state=login_state,
                client=client,
            )
            if outcome.error is not None:
                response = _error(outcome.error)
            elif outcome.session is not None:
                response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
                set_session_cookie(response, settings, outcome.session)
            elif outcome.handoff is not None:
                response = RedirectResponse(
                    f"/login?{outcome.handoff.query()}",
                    status_code=status.HTTP_302_FOUND,
                )
            else:
                raise RuntimeError(f"Login attempt ended without a result: {outcome.phase}")
    except Exception:
        logger.exception("Unexpected error during CAS validation")
        response = _error(GatewayError())

    # The login state is single-use; drop it whatever the outcome.
    clear_state_cookie(response, settings)
    return response
