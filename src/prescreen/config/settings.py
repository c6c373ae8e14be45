"""Application settings loaded from environment variables."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class BureauConfig(BaseModel):
    """Connection and retry settings for the credit-bureau gateway.

    Built from ``Settings`` so the gateway client never reads the
    environment directly.
    """

    base_url: str | None = None
    username: str | None = None
    password: SecretStr | None = None
    company_id: str | None = None

    timeout_seconds: float = 10.0
    """Per-request timeout for every gateway call."""

    login_timeout_seconds: float = 5.0
    """Timeout for the login call."""

    max_attempts: int = 3
    """Attempts for network errors, timeouts and 5xx responses."""

    retry_base_delay: float = 0.5
    """Multiplier for exponential backoff between attempts (seconds)."""

    retry_max_delay: float = 8.0

    max_batch_size: int = 1000
    """Bureau-imposed record limit per submission."""

    token_ttl_seconds: int = 30 * 60
    """Token lifetime assumed when the login response carries none."""

    token_refresh_buffer_seconds: int = 5 * 60

    @property
    def is_configured(self) -> bool:
        """True when every credential needed to reach the gateway is set."""
        return bool(
            self.base_url
            and self.username
            and self.password is not None
            and self.password.get_secret_value()
            and self.company_id
        )


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application Configuration
    ENVIRONMENT: Literal["development", "test", "staging", "production"] = "development"
    DEBUG: bool = False
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./prescreen.db"
    DATABASE_POOL_SIZE: int = 5
    DATABASE_MAX_OVERFLOW: int = 10

    # Security
    API_SECRET_KEY: SecretStr | None = None
    ENCRYPTION_KEY: SecretStr | None = None
    ENCRYPTION_KEY_VERSION: int = 1
    CORS_ORIGINS: list[str] = []

    # Bureau gateway
    BUREAU_BASE_URL: str | None = None
    BUREAU_USERNAME: str | None = None
    BUREAU_PASSWORD: SecretStr | None = None
    BUREAU_COMPANY_ID: str | None = None
    BUREAU_TIMEOUT_SECONDS: float = 10.0
    BUREAU_MAX_ATTEMPTS: int = 3
    BUREAU_RETRY_BASE_DELAY: float = 0.5
    BUREAU_MAX_BATCH_SIZE: int = 1000
    BUREAU_TOKEN_TTL_SECONDS: int = 30 * 60

    # Batch execution
    BATCH_LEASE_SECONDS: int = 5 * 60

    def get_bureau_config(self) -> BureauConfig:
        """Build the gateway client configuration."""
        return BureauConfig(
            base_url=self.BUREAU_BASE_URL.rstrip("/") if self.BUREAU_BASE_URL else None,
            username=self.BUREAU_USERNAME,
            password=self.BUREAU_PASSWORD,
            company_id=self.BUREAU_COMPANY_ID,
            timeout_seconds=self.BUREAU_TIMEOUT_SECONDS,
            max_attempts=self.BUREAU_MAX_ATTEMPTS,
            retry_base_delay=self.BUREAU_RETRY_BASE_DELAY,
            max_batch_size=self.BUREAU_MAX_BATCH_SIZE,
            token_ttl_seconds=self.BUREAU_TOKEN_TTL_SECONDS,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
