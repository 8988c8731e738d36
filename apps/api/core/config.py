"""
Centralized configuration management with validation.

All environment variables are loaded and validated here.
This ensures consistent configuration across the application.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


class Settings(BaseSettings):
    """Application settings with validation."""

    # Pydantic v2 configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore"
    )

    # Database Configuration
    # DATABASE_URL wins when set (e.g. sqlite:// for local runs and tests)
    DATABASE_URL: Optional[str] = Field(default=None)
    POSTGRES_USER: str = Field(default="postgres")
    POSTGRES_PASSWORD: str = Field(default="postgres")
    POSTGRES_DB: str = Field(default="olotrainer")
    POSTGRES_HOST: str = Field(default="postgres")
    POSTGRES_PORT: int = Field(default=5432)

    # Database Pool Configuration
    DB_POOL_SIZE: int = Field(default=20)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=3600)  # 1 hour

    # Redis Configuration
    REDIS_URL: str = Field(default="redis://redis:6379/0")

    # JWT Authentication - REQUIRED for token signing
    # Must be set via environment variable, never use default in production
    SECRET_KEY: str = Field(
        default=...,  # Required - no default
        description="JWT signing key. Must be cryptographically secure (32+ chars). "
                    "Generate with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=7 * 24 * 60)  # 7 days
    BCRYPT_ROUNDS: int = Field(default=12, ge=4, le=16)

    # Token Encryption (integration OAuth tokens at rest)
    TOKEN_ENCRYPTION_KEY: Optional[str] = Field(default=None)

    # Provider OAuth configuration (integration stubs)
    STRAVA_CLIENT_ID: Optional[str] = Field(default=None)
    STRAVA_REDIRECT_URI: Optional[str] = Field(default=None)
    GARMIN_CLIENT_ID: Optional[str] = Field(default=None)
    GARMIN_REDIRECT_URI: Optional[str] = Field(default=None)
    POLAR_CLIENT_ID: Optional[str] = Field(default=None)
    POLAR_REDIRECT_URI: Optional[str] = Field(default=None)
    FITBIT_CLIENT_ID: Optional[str] = Field(default=None)
    FITBIT_REDIRECT_URI: Optional[str] = Field(default=None)
    SUUNTO_CLIENT_ID: Optional[str] = Field(default=None)
    SUUNTO_REDIRECT_URI: Optional[str] = Field(default=None)

    # Minimum seconds between two syncs of the same integration (unless forced)
    INTEGRATION_SYNC_COOLDOWN_S: int = Field(default=60)

    # Post-commit notification delivery
    NOTIFICATION_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    NOTIFICATION_RETRY_DELAY_S: float = Field(default=0.1)

    # API Configuration
    API_HOST: str = Field(default="0.0.0.0")
    API_PORT: int = Field(default=8000)
    API_RELOAD: bool = Field(default=False)
    EXPOSE_API_DOCS: bool = Field(default=False)

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO")
    LOG_FORMAT: str = Field(default="json")  # json or text

    # Rate Limiting
    RATE_LIMIT_ENABLED: bool = Field(default=True)
    RATE_LIMIT_PER_MINUTE: int = Field(default=100)

    # Environment
    ENVIRONMENT: str = Field(default="development")
    DEBUG: bool = Field(default=False)

    # CORS - comma-separated list of allowed origins for production
    # e.g., "https://app.olotrainer.com,https://www.olotrainer.com"
    CORS_ORIGINS: Optional[str] = Field(default=None)

    # Sentry Error Tracking
    SENTRY_DSN: Optional[str] = Field(default=None)
    SENTRY_TRACES_SAMPLE_RATE: float = Field(default=0.1)  # 10% of transactions

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "production"


# Global settings instance
settings = Settings()
