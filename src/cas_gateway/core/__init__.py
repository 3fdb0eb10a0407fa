# src/cas_gateway/core/__init__.py
"""Configuration, error taxonomy and request security helpers."""
