# src/cas_gateway/__init__.py
"""CAS ticket validation and session gateway."""

__version__ = "1.0.0"
