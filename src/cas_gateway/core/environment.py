"""Startup validation of the gateway configuration.

Checks that every required value is present and well formed, and warns
about inconsistent combinations (for example a browser-facing CAS URL that
points at a different host than the server-side one outside a container).
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlsplit

from cas_gateway.core.errors import ConfigurationError
from cas_gateway.core.settings import MIN_SECRET_BYTES, Settings

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("cas_base_url", "CAS_BASE_URL"),
    ("cas_service_url", "CAS_SERVICE_URL"),
    ("public_app_url", "PUBLIC_APP_URL"),
    ("session_secret", "SESSION_SECRET"),
)

URL_FIELDS: tuple[tuple[str, str], ...] = (
    ("cas_base_url", "CAS_BASE_URL"),
    ("cas_service_url", "CAS_SERVICE_URL"),
    ("public_cas_base_url", "PUBLIC_CAS_BASE_URL"),
    ("public_cas_service_url", "PUBLIC_CAS_SERVICE_URL"),
    ("public_app_url", "PUBLIC_APP_URL"),
)


@dataclass
class EnvironmentReport:
    """Result of validating a ``Settings`` instance."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def is_consistent(self) -> bool:
        return not self.warnings


def _is_valid_url(value: str) -> bool:
    parts = urlsplit(value)
    return bool(parts.scheme in {"http", "https"} and parts.netloc)


def _host(value: str | None) -> str | None:
    if not value:
        return None
    return urlsplit(value).netloc or value


def _in_container() -> bool:
    return (
        os.getenv("DOCKER", "").lower() == "true"
        or "KUBERNETES_SERVICE_HOST" in os.environ
        or "docker" in os.getenv("HOSTNAME", "")
    )


def check_required(settings: Settings) -> list[str]:
    """Return one error per missing or malformed required value."""
    errors: list[str] = []
    for attr, env_name in REQUIRED_FIELDS:
        value = getattr(settings, attr)
        if not value or not str(value).strip():
            errors.append(f"Missing required environment variable: {env_name}")

    for attr, env_name in URL_FIELDS:
        value = getattr(settings, attr)
        if value and not _is_valid_url(value):
            errors.append(f"Invalid URL format for {env_name}: {value}")

    if len(settings.session_secret.encode("utf-8")) < MIN_SECRET_BYTES:
        errors.append(f"SESSION_SECRET should be at least {MIN_SECRET_BYTES} characters long")
    return errors


def check_consistency(settings: Settings) -> list[str]:
    """Return warnings for configuration that is valid but suspicious."""
    warnings: list[str] = []

    public_base = settings.public_cas_base_url
    server_base = settings.cas_base_url
    if public_base and server_base and _host(public_base) != _host(server_base):
        # Containers often reach CAS over an internal hostname.
        if not _in_container():
            warnings.append(
                f"CAS base URL mismatch: client={public_base}, server={server_base}"
            )

    public_service = settings.public_cas_service_url
    server_service = settings.cas_service_url
    if public_service and server_service and public_service != server_service:
        warnings.append(
            f"CAS service URL mismatch: client={public_service}, server={server_service}"
        )

    service_url = settings.browser_cas_service_url
    if settings.public_app_url and service_url:
        app_host = _host(settings.public_app_url)
        service_host = _host(service_url)
        if app_host != service_host:
            warnings.append(
                f"PUBLIC_APP_URL and CAS service URL host mismatch: {app_host} vs {service_host}"
            )
    return warnings


def validate_settings(settings: Settings) -> EnvironmentReport:
    return EnvironmentReport(
        errors=check_required(settings),
        warnings=check_consistency(settings),
    )


def summarize(settings: Settings) -> dict[str, str | bool | None]:
    """Describe the active configuration with secrets redacted."""
    return {
        "APP_ENV": settings.app_env,
        "CAS_BASE_URL": settings.cas_base_url,
        "CAS_SERVICE_URL": settings.cas_service_url,
        "PUBLIC_CAS_BASE_URL": settings.public_cas_base_url,
        "PUBLIC_CAS_SERVICE_URL": settings.public_cas_service_url,
        "PUBLIC_APP_URL": settings.public_app_url,
        "SESSION_SECRET": "[REDACTED]" if settings.session_secret else None,
        "CAS_CALLBACK_MODE": settings.cas_callback_mode,
        "RATE_LIMIT_BACKEND": settings.rate_limit_backend,
        "REPLAY_BACKEND": settings.replay_backend,
        "AUDIT_SINK": settings.audit_sink,
        "HTTPS": settings.https,
        "SSL_DOMAIN": settings.ssl_domain,
    }


def validate_on_startup(settings: Settings) -> EnvironmentReport:
    """Validate configuration, logging the outcome.

    Raises:
        ConfigurationError: In production when any required value is missing or invalid.
    """
    logger.info("Starting environment validation")
    report = validate_settings(settings)
    logger.info("Environment summary: %s", summarize(settings))

    if not report.is_valid:
        logger.error("Required environment validation failed: %s", report.errors)
        if settings.is_production:
            raise ConfigurationError("Environment validation failed: " + ", ".join(report.errors))

    if not report.is_consistent:
        logger.warning("Environment consistency warnings: %s", report.warnings)

    logger.info(
        "Environment validation completed (errors=%d, warnings=%d)",
        len(report.errors),
        len(report.warnings),
    )
    return report
