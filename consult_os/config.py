"""Configuration management for the consultation session engine."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Engine settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Clinic REST API
    api_base_url: str = Field(
        default="http://localhost:8000/api/v1",
        description="Base URL of the clinic REST API",
    )
    api_token: str = Field(
        default="",
        description="Bearer token sent with every API request",
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for API requests",
    )
    upload_timeout: float = Field(
        default=120.0,
        description="Timeout in seconds for direct blob transfers to storage",
    )

    # Timers
    queue_poll_interval: float = Field(
        default=10.0,
        description="Seconds between waiting-queue refreshes",
    )
    autosave_interval: float = Field(
        default=15.0,
        description="Seconds between background saves of dirty notes",
    )

    # Queue behaviour
    auto_advance: bool = Field(
        default=False,
        description="Call the next waiting patient after a finalize",
    )
    auto_advance_delay: float = Field(
        default=2.0,
        description="Seconds to wait before auto-advancing",
    )
    require_diagnosis: bool = Field(
        default=True,
        description="Refuse to finalize an encounter without a diagnosis",
    )

    # Telemedicine
    telemed_duration_minutes: int = Field(
        default=60,
        description="Default length of a telemedicine session window",
    )
    telemed_link_base: str = Field(
        default="http://localhost:3000/app/telemed",
        description="Base URL used to build shareable telemedicine links",
    )

    # Recording
    recording_mime_type: str = Field(default="audio/webm")
    recording_language: str = Field(default="pt-BR")

    # Observability
    observability_enabled: bool = Field(
        default=True,
        description="Write structured session events to JSON Lines files",
    )
    observability_dir: Path = Field(
        default=Path("./data/logs"),
        description="Directory for observability event files",
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(default="INFO")

    @property
    def has_api_token(self) -> bool:
        """Check if an API token is configured."""
        return bool(self.api_token)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
