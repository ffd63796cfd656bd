"""
Application Configuration
=========================

Centralized configuration using Pydantic Settings.
All configuration is loaded from environment variables with sensible defaults.
"""

from typing import List, Optional
from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Settings are validated using Pydantic and cached for performance.
    See .env.example for all available configuration options.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )

    # -------------------------------------------------------------------------
    # Application
    # -------------------------------------------------------------------------
    APP_NAME: str = "Knowscope"
    APP_ENV: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # -------------------------------------------------------------------------
    # API
    # -------------------------------------------------------------------------
    API_HOST: str = "0.0.0.0"
    API_PORT: int = 8000
    API_PREFIX: str = "/api/v1"
    CORS_ORIGINS: List[str] = Field(default_factory=list)

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def parse_cors_origins(cls, v):
        """Parse CORS origins from string or list."""
        if v is None:
            return []
        if isinstance(v, str):
            return [origin.strip() for origin in v.split(",") if origin.strip()]
        return v

    # -------------------------------------------------------------------------
    # Database
    # -------------------------------------------------------------------------
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "knowscope"
    POSTGRES_PASSWORD: str = "knowscope_dev_password"
    POSTGRES_DB: str = "knowscope"

    # Optional full DSN overrides (used by some deployments and tooling)
    POSTGRES_URL: Optional[str] = None
    POSTGRES_URL_SYNC: Optional[str] = None

    # Test-only DB overrides (used by pytest fixtures)
    TEST_DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL_SYNC: Optional[str] = None

    @property
    def DATABASE_URL(self) -> str:
        """Build the async database URL."""
        if self.APP_ENV == "test" and self.TEST_DATABASE_URL:
            return self.TEST_DATABASE_URL
        if self.POSTGRES_URL:
            return self.POSTGRES_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    @property
    def DATABASE_URL_SYNC(self) -> str:
        """Build the sync database URL (for Alembic)."""
        if self.APP_ENV == "test" and self.TEST_DATABASE_URL_SYNC:
            return self.TEST_DATABASE_URL_SYNC
        if self.POSTGRES_URL_SYNC:
            return self.POSTGRES_URL_SYNC
        return (
            f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # -------------------------------------------------------------------------
    # Knowledge store
    # -------------------------------------------------------------------------
    # Upper bound for a single store call; exceeding it surfaces as
    # StoreUnavailableError so callers may retry.
    STORE_TIMEOUT_SECONDS: float = 10.0

    # Maximum accepted article body size (characters).
    KNOWLEDGE_MAX_CONTENT_CHARS: int = 200000

    # -------------------------------------------------------------------------
    # Helper Methods
    # -------------------------------------------------------------------------

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.APP_ENV == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.APP_ENV == "production"


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Uses lru_cache to ensure settings are only loaded once and reused.

    Returns:
        Settings: Validated settings instance
    """
    return Settings()


# Global settings instance
settings = get_settings()
