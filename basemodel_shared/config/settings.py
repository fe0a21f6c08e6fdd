"""
Library settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings

from basemodel_shared.config.constants import Limits


class Settings(BaseSettings):
    """Library settings with defaults for development."""

    # Database
    database_url: str = "sqlite:///./basemodel.db"

    # Environment
    environment: str = "development"
    debug: bool = True

    # Pagination: per_page is always min(requested, max_pagination)
    default_pagination: int = Limits.DEFAULT_PAGE_SIZE
    max_pagination: int = Limits.MAX_PAGE_SIZE

    # JWT used to look up the stored decryption key (jti claim)
    jwt_secret: str = "dev-secret-change-me-in-production"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = ""

    # Header carrying the secret that unlocks the stored decryption key
    decryption_header: str = "X-Encryption"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "BASEMODEL_"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


settings = get_settings()
