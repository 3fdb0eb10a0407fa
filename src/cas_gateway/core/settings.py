"""Application settings and configuration.

This module defines all configuration options for the CAS gateway.
Settings are loaded from environment variables with sensible defaults.
"""

from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

MIN_SECRET_BYTES = 32


class Settings(BaseSettings):
    """Gateway settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files. Tests
    construct their own instance and hand it to ``create_app``.
    """

    # Application metadata
    app_name: str = Field(default="CAS Gateway", alias="APP_NAME")
    app_version: str = Field(default="1.0.0", alias="APP_VERSION")
    app_env: str = Field(default="development", alias="APP_ENV")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # CAS server (server-side URLs may point at an internal network address)
    cas_base_url: str | None = Field(default=None, alias="CAS_BASE_URL")
    cas_service_url: str | None = Field(default=None, alias="CAS_SERVICE_URL")
    public_cas_base_url: str | None = Field(default=None, alias="PUBLIC_CAS_BASE_URL")
    public_cas_service_url: str | None = Field(default=None, alias="PUBLIC_CAS_SERVICE_URL")
    cas_timeout_seconds: float = Field(default=10.0, alias="CAS_TIMEOUT_SECONDS")
    cas_ca_cert: str | None = Field(default=None, alias="CAS_CA_CERT")
    cas_callback_mode: Literal["redirect", "session"] = Field(
        default="redirect",
        alias="CAS_CALLBACK_MODE",
    )

    # Public URL of this application, used for origin checks
    public_app_url: str | None = Field(default=None, alias="PUBLIC_APP_URL")

    # Session signing
    session_secret: str = Field(alias="SESSION_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    session_max_age_seconds: int = Field(default=60 * 60 * 24, alias="SESSION_MAX_AGE_SECONDS")
    session_idle_timeout_seconds: int = Field(
        default=60 * 60 * 4,
        alias="SESSION_IDLE_TIMEOUT_SECONDS",
    )
    session_update_age_seconds: int = Field(default=60 * 60, alias="SESSION_UPDATE_AGE_SECONDS")
    cookie_prefix: str = Field(default="cas-gateway", alias="COOKIE_PREFIX")

    # Login state (anti-replay)
    login_state_max_age_seconds: int = Field(default=300, alias="LOGIN_STATE_MAX_AGE_SECONDS")
    replay_backend: Literal["memory", "redis"] = Field(default="memory", alias="REPLAY_BACKEND")

    # Rate limiting
    rate_limit_requests: int = Field(default=100, alias="RATE_LIMIT_REQUESTS")
    rate_limit_window_seconds: int = Field(default=15 * 60, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_backend: Literal["memory", "redis"] = Field(
        default="memory",
        alias="RATE_LIMIT_BACKEND",
    )

    # Redis configuration for shared rate-limit and replay state
    redis_url: str = Field(default="redis://localhost:6379", alias="REDIS_URL")

    # Audit sink
    audit_sink: Literal["log", "memory", "database"] = Field(default="log", alias="AUDIT_SINK")
    audit_buffer_size: int = Field(default=1000, alias="AUDIT_BUFFER_SIZE")
    database_url: str = Field(default="sqlite:///./cas_gateway.db", alias="DATABASE_URL")
    sql_debug: bool = Field(default=False, alias="SQL_DEBUG")

    # Route policy
    require_auth: bool = Field(default=True, alias="REQUIRE_AUTH")
    csrf_protected_paths: list[str] = Field(
        default=["/api/cas/validate", "/api/auth/signin", "/api/auth/signout"],
        alias="CSRF_PROTECTED_PATHS",
    )
    sensitive_path_prefixes: list[str] = Field(
        default=["/api/cas/", "/api/auth/"],
        alias="SENSITIVE_PATH_PREFIXES",
    )
    public_path_prefixes: list[str] = Field(
        default=["/login", "/api/auth", "/api/cas", "/api/config", "/health"],
        alias="PUBLIC_PATH_PREFIXES",
    )

    # HTTPS bootstrap
    https: bool = Field(default=False, alias="HTTPS")
    ssl_cert_file: str = Field(default="/app/certs/server.crt", alias="SSL_CERT_FILE")
    ssl_key_file: str = Field(default="/app/certs/server.key", alias="SSL_KEY_FILE")
    ssl_domain: str = Field(default="localhost", alias="SSL_DOMAIN")
    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3000, alias="PORT")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("session_secret")
    @classmethod
    def _secret_long_enough(cls, value: str) -> str:
        if len(value.encode("utf-8")) < MIN_SECRET_BYTES:
            raise ValueError(f"SESSION_SECRET must be at least {MIN_SECRET_BYTES} bytes long")
        return value

    @property
    def is_production(self) -> bool:
        return self.app_env.lower() == "production"

    @property
    def session_cookie_name(self) -> str:
        return f"{self.cookie_prefix}.session-token"

    @property
    def csrf_cookie_name(self) -> str:
        return f"{self.cookie_prefix}.csrf-token"

    @property
    def state_cookie_name(self) -> str:
        return f"{self.cookie_prefix}.cas-state"

    @property
    def browser_cas_base_url(self) -> str | None:
        """Return the CAS URL the browser is redirected to.

        Falls back to the server-side URL when no public override is set.
        """
        return self.public_cas_base_url or self.cas_base_url

    @property
    def browser_cas_service_url(self) -> str | None:
        return self.public_cas_service_url or self.cas_service_url


settings = Settings()  # type: ignore[call-arg]
