# src/cas_gateway/models/__init__.py
"""SQLAlchemy models for the CAS gateway."""

from .security_event import SecurityEventRecord

__all__ = ["SecurityEventRecord"]
