"""Authentication-related Pydantic schemas."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Generic error body; never carries upstream detail."""

    error: str = Field(..., description="Human-readable, non-leaking message")
    code: str = Field(..., description="Stable machine-readable error code")


class CsrfResponse(BaseModel):
    csrf_token: str = Field(..., alias="csrfToken", description="Token to echo in X-CSRF-Token")

    model_config = ConfigDict(populate_by_name=True)


class SignInRequest(BaseModel):
    """Legacy completion of a CAS login.

    Fields are optional here so that missing values reach the login flow and
    come back as ``STATE_MISSING`` instead of a validation error.
    """

    cas_user: str | None = Field(None, description="Username handed back after ticket validation")
    state: str | None = Field(None, description="Hand-off state issued with the redirect")
    timestamp: str | int | None = Field(None, description="Issue time of the state (epoch ms)")


class SessionResponse(BaseModel):
    """The caller's current session."""

    subject_id: str
    display_name: str
    issued_at: int = Field(..., description="Epoch seconds")
    expires_at: int = Field(..., description="Epoch seconds")


class SignInResponse(BaseModel):
    ok: bool = True
    session: SessionResponse


class SignOutResponse(BaseModel):
    ok: bool = True
