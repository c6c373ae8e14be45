"""Utility modules for the prescreen service."""

from prescreen.utils.exceptions import ConfigurationError, PrescreenError

__all__ = [
    "PrescreenError",
    "ConfigurationError",
]
