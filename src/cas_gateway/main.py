"""Main entry point for the CAS gateway."""

from __future__ import annotations

import logging
from pathlib import Path

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from cas_gateway import __version__
from cas_gateway.api import SecurityMiddleware, auth_router, cas_router, system_router
from cas_gateway.core.environment import validate_on_startup
from cas_gateway.core.errors import GatewayError
from cas_gateway.core.settings import Settings, settings as default_settings
from cas_gateway.services.audit import AuditSink
from cas_gateway.services.container import build_services
from cas_gateway.services.rate_limit import RateLimiter
from cas_gateway.services.replay import ReplayStore

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Install a single stream handler on the root logger."""
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT, force=True)


async def _gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
    logger.warning("%s %s failed: %s (%s)", request.method, request.url.path, exc.code, exc.detail)
    return JSONResponse(exc.to_body(), status_code=exc.status_code)


def create_app(
    settings: Settings | None = None,
    *,
    audit_sink: AuditSink | None = None,
    rate_limiter: RateLimiter | None = None,
    replay_store: ReplayStore | None = None,
    cas_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    """Build the gateway application.

    Args:
        settings: Configuration to use; defaults to the environment-loaded settings
        audit_sink: Override for the configured audit sink
        rate_limiter: Override for the configured rate limiter
        replay_store: Override for the configured replay store
        cas_transport: httpx transport for the CAS call (tests use ``httpx.MockTransport``)

    Returns:
        Configured FastAPI application

    Raises:
        ConfigurationError: In production when the configuration is invalid
    """
    settings = settings or default_settings
    validate_on_startup(settings)

    services = build_services(
        settings,
        audit_sink=audit_sink,
        rate_limiter=rate_limiter,
        replay_store=replay_store,
        cas_transport=cas_transport,
    )

    app = FastAPI(
        title=settings.app_name,
        description="CAS ticket validation and session gateway",
        version=__version__,
    )
    app.state.services = services

    app.add_middleware(SecurityMiddleware, services=services)
    app.add_exception_handler(GatewayError, _gateway_error_handler)  # type: ignore[arg-type]

    app.include_router(cas_router, prefix="/api")
    app.include_router(auth_router, prefix="/api")
    app.include_router(system_router)
    return app


def _ssl_options(settings: Settings) -> dict[str, str]:
    if not settings.https:
        return {}
    cert = Path(settings.ssl_cert_file)
    key = Path(settings.ssl_key_file)
    if cert.is_file() and key.is_file():
        logger.info("Serving HTTPS for %s with %s", settings.ssl_domain, cert)
        return {"ssl_certfile": str(cert), "ssl_keyfile": str(key)}
    logger.warning("HTTPS enabled but certificate files are missing (%s, %s); serving HTTP", cert, key)
    return {}


def run(settings: Settings | None = None) -> None:
    """Run the gateway under uvicorn."""
    import uvicorn

    application = app if settings is None else create_app(settings)
    settings = settings or default_settings
    configure_logging(settings.log_level)
    uvicorn.run(
        application,
        host=settings.host,
        port=settings.port,
        **_ssl_options(settings),  # type: ignore[arg-type]
    )


app = create_app()

if __name__ == "__main__":
    run()
