"""Application settings loaded from environment variables and .env files."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """PHD2 link configuration.

    Every field can be overridden with an environment variable of the same
    name (case-insensitive), e.g. ``PHD2_HOST=guider.local``.
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # PHD2 server location
    phd2_host: str = "localhost"
    phd2_instance: int = Field(default=1, ge=1)

    # Timeouts (seconds)
    phd2_connect_timeout: float = Field(default=10.0, gt=0)
    phd2_command_timeout: float = Field(default=30.0, gt=0)
    phd2_disconnect_timeout: float = Field(default=5.0, gt=0)

    # Settle polling
    phd2_settle_poll_interval: float = Field(default=1.0, gt=0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
