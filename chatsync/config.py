from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # Pydantic v2 settings config
    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./chatsync.db"
    DB_RETRY_DELAY_SECONDS: float = 5.0

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Ingestion signature secret; signature checks are skipped when unset
    WEBHOOK_SECRET: Optional[str] = None

    # Uploaded media (status items, profile pictures)
    UPLOAD_DIR: str = "uploads"
    MAX_UPLOAD_MB: int = 10

    # Status expiry
    STATUS_TTL_HOURS: float = 24.0

    # Delivery/read simulation for locally sent messages
    DELIVERED_DELAY_MS: int = 800
    READ_DELAY_MS: int = 2200

    # Comma separated list of allowed origins, "*" for any
    CORS_ORIGINS: str = "*"

    @property
    def cors_origins(self) -> list[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
