"""Custom exceptions for the prescreen service."""


class PrescreenError(Exception):
    """Base exception for all prescreen errors."""

    pass


class ConfigurationError(PrescreenError):
    """Error in configuration or settings."""

    pass
