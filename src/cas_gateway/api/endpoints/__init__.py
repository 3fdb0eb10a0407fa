# src/cas_gateway/api/endpoints/__init__.py
"""API endpoint modules."""

from .auth import router as auth_router
from .cas import router as cas_router
from .system import router as system_router

__all__ = [
    "auth_router",
    "cas_router",
    "system_router",
]
