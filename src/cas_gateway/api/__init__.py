# src/cas_gateway/api/__init__.py
"""HTTP surface of the CAS gateway."""

from .endpoints import auth_router, cas_router, system_router
from .middleware import SecurityMiddleware

__all__ = [
    "auth_router",
    "cas_router",
    "system_router",
    "SecurityMiddleware",
]
