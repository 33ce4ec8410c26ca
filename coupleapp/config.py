from functools import lru_cache
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

    # Seconds a writer waits on a locked SQLite database before giving up
    DB_TIMEOUT_SECONDS: float = 5.0

    # Logging Configuration - required from .env
    LOG_LEVEL: str

    # Defaults for list endpoints
    UPCOMING_DEFAULT_DAYS: int = 7
    LOGS_DEFAULT_LIMIT: int = 100


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
