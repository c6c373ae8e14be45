"""Configuration validation for startup checks.

Validates that required configuration is present and valid before the
application starts accepting requests.

Usage:
    from prescreen.config.validation import validate_configuration

    errors = validate_configuration()
    for error in errors:
        logger.error("configuration_error", detail=str(error))
"""

import base64
import binascii
from dataclasses import dataclass
from enum import Enum

import structlog

from prescreen.config.settings import Settings, get_settings
from prescreen.utils.exceptions import ConfigurationError

logger = structlog.get_logger()


class ValidationSeverity(str, Enum):
    """Severity of configuration validation issues."""

    ERROR = "error"  # Must be fixed, app cannot start
    WARNING = "warning"  # App can start but some features are degraded


@dataclass
class ValidationResult:
    """Result of a configuration validation check."""

    field: str
    severity: ValidationSeverity
    message: str
    suggestion: str | None = None

    def __str__(self) -> str:
        prefix = "ERROR" if self.severity == ValidationSeverity.ERROR else "WARNING"
        result = f"[{prefix}] {self.field}: {self.message}"
        if self.suggestion:
            result += f"\n  Suggestion: {self.suggestion}"
        return result


def validate_configuration(settings: Settings | None = None) -> list[ValidationResult]:
    """Validate application configuration.

    Args:
        settings: Settings to validate (default: global settings)

    Returns:
        List of validation results (empty if all checks pass)
    """
    if settings is None:
        settings = get_settings()

    results: list[ValidationResult] = []
    results.extend(_validate_database(settings))
    results.extend(_validate_security(settings))
    results.extend(_validate_bureau(settings))
    return results


def validate_or_raise(settings: Settings | None = None) -> None:
    """Validate configuration and raise if errors found.

    Raises:
        ConfigurationError: If any validation errors are found
    """
    results = validate_configuration(settings)
    errors = [r for r in results if r.severity == ValidationSeverity.ERROR]

    if errors:
        error_messages = "\n".join(str(e) for e in errors)
        raise ConfigurationError(f"Configuration validation failed:\n{error_messages}")

    for warning in results:
        logger.warning("configuration_warning", detail=str(warning))


def _validate_database(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if not settings.DATABASE_URL:
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.ERROR,
                message="Database URL is not configured",
                suggestion="Set DATABASE_URL environment variable",
            )
        )
    elif not settings.DATABASE_URL.startswith(("postgresql", "sqlite")):
        results.append(
            ValidationResult(
                field="DATABASE_URL",
                severity=ValidationSeverity.WARNING,
                message="Unexpected database type in URL",
                suggestion="The service is tested against PostgreSQL and SQLite",
            )
        )

    return results


def _validate_security(settings: Settings) -> list[ValidationResult]:
    results: list[ValidationResult] = []

    if settings.ENCRYPTION_KEY is None:
        results.append(
            ValidationResult(
                field="ENCRYPTION_KEY",
                severity=ValidationSeverity.ERROR,
                message="Encryption key is required to store SSN and date of birth",
                suggestion=(
                    "Generate with: python -c 'from prescreen.core.encryption import "
                    "generate_key, key_to_string; print(key_to_string(generate_key()))'"
                ),
            )
        )
    else:
        try:
            key = base64.b64decode(settings.ENCRYPTION_KEY.get_secret_value(), validate=True)
        except (binascii.Error, ValueError):
            key = b""
        if len(key) != 32:
            results.append(
                ValidationResult(
                    field="ENCRYPTION_KEY",
                    severity=ValidationSeverity.ERROR,
                    message="Encryption key must be 32 bytes, base64 encoded",
                )
            )

    if settings.API_SECRET_KEY is None:
        severity = (
            ValidationSeverity.ERROR
            if settings.ENVIRONMENT == "production"
            else ValidationSeverity.WARNING
        )
        results.append(
            ValidationResult(
                field="API_SECRET_KEY",
                severity=severity,
                message="API secret key is not configured; admin API rejects all callers",
            )
        )

    return results


def _validate_bureau(settings: Settings) -> list[ValidationResult]:
    config = settings.get_bureau_config()
    if config.is_configured:
        return []
    return [
        ValidationResult(
            field="BUREAU_BASE_URL",
            severity=ValidationSeverity.WARNING,
            message="Bureau gateway credentials incomplete; batch submission is disabled",
            suggestion=(
                "Set BUREAU_BASE_URL, BUREAU_USERNAME, BUREAU_PASSWORD and BUREAU_COMPANY_ID"
            ),
        )
    ]
