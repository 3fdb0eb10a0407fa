"""Schemas for the login landing page and runtime configuration endpoints."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RuntimeConfigResponse(BaseModel):
    """Public runtime configuration for the browser."""

    cas_base_url: str | None = Field(None, alias="casBaseUrl")
    cas_service_url: str | None = Field(None, alias="casServiceUrl")
    login_url: str = Field("/api/cas/login", alias="loginUrl")

    model_config = ConfigDict(populate_by_name=True)


class LoginPageResponse(BaseModel):
    """State of the login landing page.

    ``error`` is always one of a fixed set of generic messages.
    """

    login_url: str = Field(..., alias="loginUrl")
    error: str | None = None
    error_code: str | None = Field(None, alias="errorCode")
    cas_login: bool = Field(False, alias="casLogin")
    cas_user: str | None = Field(None, alias="casUser")
    state: str | None = None
    timestamp: str | None = None

    model_config = ConfigDict(populate_by_name=True)


class EnvironmentResponse(BaseModel):
    valid: bool
    consistent: bool
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    summary: dict[str, str | bool | None] = Field(default_factory=dict)
