"""Login landing page, runtime configuration and liveness endpoints."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from cas_gateway.api.dependencies import ServicesDep
from cas_gateway.core.environment import summarize, validate_settings
from cas_gateway.schemas.system import (
    EnvironmentResponse,
    LoginPageResponse,
    RuntimeConfigResponse,
)
from cas_gateway.services.replay import ReplayVerdict

router = APIRouter(tags=["system"])

CAS_LOGIN_PATH = "/api/cas/login"
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}

# Error codes the login page understands; anything else gets the generic message.
LOGIN_ERROR_MESSAGES: dict[str, str] = {
    "expired": "Login request has expired, please sign in again",
    "invalid": "Invalid username format",
    "state": "Security verification failed, please sign in again",
    "signin_failed": "Login failed, please try again",
    "signin_error": "An error occurred during login",
    "config": "CAS configuration error, please contact the administrator",
}
UNKNOWN_LOGIN_ERROR = "An unknown error occurred during login"


@router.get("/login", response_model=LoginPageResponse)
async def login_page(
    services: ServicesDep,
    error: str | None = None,
    cas_user: str | None = None,
    cas_login: str | None = None,
    state: str | None = None,
    timestamp: str | None = None,
) -> LoginPageResponse:
    """Describe the login page for the given query string.

    A CAS hand-off (``cas_login=success``) is pre-checked here so the page can
    show a useful message before posting to ``/api/auth/signin``; nothing is
    consumed until that post.
    """
    page = LoginPageResponse(login_url=CAS_LOGIN_PATH)
    if error is not None:
        page.error_code = error if error in LOGIN_ERROR_MESSAGES else "unknown"
        page.error = LOGIN_ERROR_MESSAGES.get(error, UNKNOWN_LOGIN_ERROR)
        return page

    if cas_login != "success" or not cas_user:
        return page

    verdict = services.replay_guard.check(state, timestamp)
    if verdict is ReplayVerdict.EXPIRED:
        code = "expired"
    elif verdict is ReplayVerdict.MALFORMED:
        code = "state"
    elif not services.identity_policy.check(cas_user).ok:
        code = "invalid"
    else:
        page.cas_login = True
        page.cas_user = cas_user
        page.state = state
        page.timestamp = timestamp
        return page

    page.error_code = code
    page.error = LOGIN_ERROR_MESSAGES[code]
    return page


@router.get("/api/config", response_model=RuntimeConfigResponse)
async def runtime_config(services: ServicesDep) -> JSONResponse:
    """Return the browser-facing CAS configuration, never cached."""
    settings = services.settings
    body = RuntimeConfigResponse(
        cas_base_url=settings.browser_cas_base_url,
        cas_service_url=settings.browser_cas_service_url,
        login_url=CAS_LOGIN_PATH,
    )
    return JSONResponse(body.model_dump(by_alias=True), headers=NO_CACHE_HEADERS)


@router.get(
    "/api/env",
    response_model=EnvironmentResponse,
    responses={500: {"model": EnvironmentResponse}},
)
async def environment_report(services: ServicesDep) -> JSONResponse:
    """Validate the running configuration; secrets are redacted."""
    report = validate_settings(services.settings)
    body = EnvironmentResponse(
        valid=report.is_valid,
        consistent=report.is_consistent,
        errors=report.errors,
        warnings=report.warnings,
        summary=summarize(services.settings),
    )
    return JSONResponse(body.model_dump(), status_code=200 if report.is_valid else 500)


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@router.get("/")
async def root(services: ServicesDep) -> dict[str, str]:
    """Root endpoint with basic information about the gateway."""
    settings = services.settings
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "CAS ticket validation and session gateway",
        "login": CAS_LOGIN_PATH,
    }
