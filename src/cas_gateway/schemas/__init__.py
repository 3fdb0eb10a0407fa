# src/cas_gateway/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .auth import (
    CsrfResponse,
    ErrorResponse,
    SessionResponse,
    SignInRequest,
    SignInResponse,
    SignOutResponse,
)
from .system import EnvironmentResponse, LoginPageResponse, RuntimeConfigResponse

__all__ = [
    "CsrfResponse", "ErrorResponse",
    "SessionResponse", "SignInRequest", "SignInResponse", "SignOutResponse",
    "EnvironmentResponse", "LoginPageResponse", "RuntimeConfigResponse",
]
