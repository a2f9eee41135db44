"""Connection settings loaded from the environment using Pydantic Settings."""

from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings read from ``TURSOMAP_*`` environment variables or a ``.env`` file.

    Example:
        TURSOMAP_URL=https://db-org.turso.io
        TURSOMAP_AUTH_TOKEN=eyJhbGciOi...
    """

    model_config = SettingsConfigDict(
        env_prefix="TURSOMAP_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Endpoint
    url: str | None = None
    auth_token: str | None = None
    timeout: float = 30.0

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "console"] = "console"


def load_settings(**overrides) -> Settings:
    """Create a fresh settings instance; keyword overrides win over the environment."""
    return Settings(**overrides)
