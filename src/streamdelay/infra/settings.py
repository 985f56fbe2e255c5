"""
Process settings for streamdelay.

API endpoint, credentials and logging options are read with Pydantic
BaseSettings from the environment or a ``.env`` file. Stream and engine
parameters live in :class:`streamdelay.runtime.config.StreamSettings`.
"""

from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Main application settings using Pydantic BaseSettings."""

    api_hostname: str = Field(default="localhost", alias="STREAMDELAY_API_HOSTNAME")
    api_port: int = Field(default=8404, alias="STREAMDELAY_API_PORT")
    api_key: str = Field(default="", alias="STREAMDELAY_API_KEY")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")  # json|console
    env: str = Field(default="dev", alias="ENV")  # dev|prod|test

    model_config: SettingsConfigDict = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )


def _resolve_env_file() -> str | None:
    # 1) Explicit override
    explicit = os.getenv("STREAMDELAY_ENV_FILE")
    if explicit and Path(explicit).is_file():
        return explicit

    # 2) CWD .env
    cwd_env = Path.cwd() / ".env"
    if cwd_env.is_file():
        return str(cwd_env)
    return None


def load_settings() -> Settings:
    """Build settings from the environment and the best-effort ``.env`` file."""
    env_file = _resolve_env_file()
    return Settings(_env_file=env_file) if env_file else Settings()  # type: ignore[call-arg]


settings = load_settings()
