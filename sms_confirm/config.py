from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required from .env
    DATABASE_URL: str

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Optional HMAC secret for provider webhooks (X-Signature)
    WEBHOOK_SECRET: Optional[str] = None

    # Bearer token for the outbound SMS routes
    API_TOKEN: Optional[str] = None

    # JustCall provider
    JUSTCALL_API_URL: str = "https://api.justcall.io/v2.1"
    JUSTCALL_API_KEY: Optional[str] = None
    JUSTCALL_API_SECRET: Optional[str] = None
    PROVIDER_TIMEOUT_SECONDS: float = 10.0

    # Fallback sender when no global SMS settings row exists
    DEFAULT_SENDER_NUMBER: Optional[str] = None


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
