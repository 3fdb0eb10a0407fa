"""Cookie helpers for the session, CSRF and login-state cookies."""

from __future__ import annotations

from starlette.responses import Response

from cas_gateway.core.settings import Settings
from cas_gateway.services.replay import LoginState
from cas_gateway.services.session import Session


def set_session_cookie(response: Response, settings: Settings, session: Session) -> None:
    response.set_cookie(
        settings.session_cookie_name,
        session.token,
        max_age=session.max_age_seconds,
        path="/",
        secure=settings.https,
        httponly=True,
        samesite="lax",
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.session_cookie_name,
        path="/",
        secure=settings.https,
        httponly=True,
        samesite="lax",
    )


def set_csrf_cookie(response: Response, settings: Settings, token: str) -> None:
    # Readable by the page so it can echo the value in X-CSRF-Token.
    response.set_cookie(
        settings.csrf_cookie_name,
        token,
        path="/",
        secure=settings.https,
        httponly=False,
        samesite="lax",
    )


def set_state_cookie(response: Response, settings: Settings, login_state: LoginState) -> None:
    response.set_cookie(
        settings.state_cookie_name,
        login_state.to_cookie(),
        max_age=settings.login_state_max_age_seconds,
        path="/",
        secure=settings.https,
        httponly=True,
        samesite="lax",
    )


def clear_state_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(
        settings.state_cookie_name,
        path="/",
        secure=settings.https,
        httponly=True,
        samesite="lax",
    )
