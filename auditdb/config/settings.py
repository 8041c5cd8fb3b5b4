"""
Application Settings

Centralized configuration management using Pydantic Settings.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # Application
    APP_NAME: str = "auditdb"
    APP_ENV: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = Field(default="")
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10
    DATABASE_POOL_TIMEOUT_SECONDS: float = 30.0
    DATABASE_CONNECT_TIMEOUT_SECONDS: float = 15.0

    # Retry on transient failure
    DATABASE_RETRY_MAX_ATTEMPTS: int = 6
    DATABASE_RETRY_BASE_DELAY_SECONDS: float = 1.0
    DATABASE_RETRY_MAX_DELAY_SECONDS: float = 30.0

    # Diagnostics
    # Writes bound parameters to logs and error details. Development only.
    DATABASE_SENSITIVE_DATA_LOGGING: bool = False

    # Commit notification
    # When True, observers are notified even if a commit had nothing to write
    DATABASE_NOTIFY_ON_EMPTY_COMMIT: bool = False

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.APP_ENV == "production"

    @property
    def is_development(self) -> bool:
        """Check if running in development or local environment."""
        return self.APP_ENV in ("development", "local")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
