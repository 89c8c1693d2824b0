from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import AnyHttpUrl, Field
from pydantic_settings import BaseSettings, SettingsConfigDict  # type: ignore[import]


class Settings(BaseSettings):
    """Configuration for the SPHERE / H.A.R.V.E.Y. client service."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Core service
    app_name: str = Field(default="sphere-harvey-client")
    environment: Literal["local", "development", "staging", "production"] = "local"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    log_json: bool = Field(default=False, description="Render log lines as JSON instead of console text")

    # Collaborators
    harvey_base_url: AnyHttpUrl = Field(
        default="http://localhost:8086",
        description="Base URL of the H.A.R.V.E.Y. assistant API",
    )
    sphere_base_url: AnyHttpUrl = Field(
        default="http://localhost:8080/api",
        description="Base URL of the SPHERE pricing REST API",
    )
    sphere_api_token: Optional[str] = Field(
        default=None,
        description="Bearer token used for SPHERE write operations",
    )

    # Storage
    harvey_static_dir: Optional[Path] = Field(
        default=None,
        description="Store context YAML files in this directory instead of uploading them to H.A.R.V.E.Y.",
    )
    datasheets_dir: Optional[Path] = Field(
        default=None,
        description="Directory holding plan datasheet YAML files",
    )

    # Async behaviour
    http_timeout_seconds: float = 60.0
    chat_timeout_seconds: float = 600.0
    max_retry_attempts: int = 3
    retry_backoff_seconds: float = 1.5
    events_reconnect_seconds: float = 5.0
    subscribe_to_events: bool = Field(
        default=True,
        description="Listen to the assistant's url_transform stream during the app lifespan",
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()  # type: ignore[arg-type]
