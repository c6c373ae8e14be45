"""Unit tests for configuration validation."""

import pytest
from pydantic import SecretStr

from prescreen.config.settings import Settings
from prescreen.config.validation import (
    ValidationResult,
    ValidationSeverity,
    validate_configuration,
    validate_or_raise,
)
from prescreen.utils.exceptions import ConfigurationError


def errors_for(settings: Settings, field: str) -> list[ValidationResult]:
    return [
        r
        for r in validate_configuration(settings)
        if r.field == field and r.severity == ValidationSeverity.ERROR
    ]


class TestValidationResult:
    """Tests for ValidationResult class."""

    def test_str_error(self):
        result = ValidationResult(
            field="TEST_FIELD",
            severity=ValidationSeverity.ERROR,
            message="Test error message",
        )
        text = str(result)
        assert "[ERROR]" in text
        assert "TEST_FIELD" in text

    def test_str_with_suggestion(self):
        result = ValidationResult(
            field="TEST_FIELD",
            severity=ValidationSeverity.WARNING,
            message="Test message",
            suggestion="Fix this by doing X",
        )
        text = str(result)
        assert "[WARNING]" in text
        assert "Suggestion: Fix this by doing X" in text


class TestSecurityValidation:
    """Tests for encryption and API key checks."""

    def test_valid_configuration(self, test_settings: Settings):
        assert [
            r for r in validate_configuration(test_settings)
            if r.severity == ValidationSeverity.ERROR
        ] == []

    def test_encryption_key_required(self):
        settings = Settings(ENCRYPTION_KEY=None, API_SECRET_KEY=SecretStr("k"))

        assert len(errors_for(settings, "ENCRYPTION_KEY")) == 1

    @pytest.mark.parametrize("key", ["not base64!!", "c2hvcnQ="])
    def test_encryption_key_must_be_32_bytes(self, key: str):
        settings = Settings(ENCRYPTION_KEY=SecretStr(key))

        assert len(errors_for(settings, "ENCRYPTION_KEY")) == 1

    def test_api_key_required_in_production(self, encryption_key: str):
        settings = Settings(
            ENVIRONMENT="production",
            ENCRYPTION_KEY=SecretStr(encryption_key),
            API_SECRET_KEY=None,
        )

        assert len(errors_for(settings, "API_SECRET_KEY")) == 1

    def test_api_key_missing_warns_in_development(self, encryption_key: str):
        settings = Settings(
            ENVIRONMENT="development",
            ENCRYPTION_KEY=SecretStr(encryption_key),
            API_SECRET_KEY=None,
        )

        results = [r for r in validate_configuration(settings) if r.field == "API_SECRET_KEY"]
        assert [r.severity for r in results] == [ValidationSeverity.WARNING]


class TestBureauValidation:
    def test_incomplete_credentials_warn(self, encryption_key: str):
        settings = Settings(
            ENCRYPTION_KEY=SecretStr(encryption_key),
            BUREAU_BASE_URL="https://gateway.test",
        )

        results = [r for r in validate_configuration(settings) if r.field == "BUREAU_BASE_URL"]
        assert [r.severity for r in results] == [ValidationSeverity.WARNING]

    def test_complete_credentials_pass(self, test_settings: Settings):
        assert not [
            r for r in validate_configuration(test_settings) if r.field == "BUREAU_BASE_URL"
        ]

    def test_bureau_config_trims_base_url(self, test_settings: Settings):
        settings = test_settings.model_copy(update={"BUREAU_BASE_URL": "https://gateway.test/"})

        assert settings.get_bureau_config().base_url == "https://gateway.test"


class TestValidateOrRaise:
    def test_raises_on_errors(self):
        with pytest.raises(ConfigurationError, match="ENCRYPTION_KEY"):
            validate_or_raise(Settings(ENCRYPTION_KEY=None))

    def test_passes_with_warnings_only(self, encryption_key: str):
        validate_or_raise(Settings(ENCRYPTION_KEY=SecretStr(encryption_key)))
