"""Shared API dependencies for authentication and common functionality."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from cas_gateway.core.errors import SessionMalformed
from cas_gateway.core.security import client_ip, user_agent
from cas_gateway.services.container import GatewayServices
from cas_gateway.services.session import Session
from cas_gateway.services.ticket import ClientInfo


def get_services(request: Request) -> GatewayServices:
    """Return the service container built by ``create_app``."""
    services: GatewayServices = request.app.state.services
    return services


ServicesDep = Annotated[GatewayServices, Depends(get_services)]


def get_client_info(request: Request) -> ClientInfo:
    return ClientInfo(ip=client_ip(request), user_agent=user_agent(request))


ClientDep = Annotated[ClientInfo, Depends(get_client_info)]


def get_current_session(request: Request, services: ServicesDep) -> Session:
    """Get the session for the current request.

    Protected routes already carry the session verified by the security
    middleware; public routes verify the cookie here.

    Args:
        request: Incoming request
        services: Gateway service container

    Returns:
        The verified session

    Raises:
        SessionError: If the cookie is absent, tampered with or expired
    """
    session: Session | None = getattr(request.state, "session", None)
    if session is not None:
        return session
    token = request.cookies.get(services.settings.session_cookie_name)
    if not token:
        raise SessionMalformed("No session cookie")
    return services.session_issuer.verify(token)


CurrentSessionDep = Annotated[Session, Depends(get_current_session)]
