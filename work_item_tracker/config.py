"""
Configuration management for the Work Item Tracker.
"""

from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings.

    Instances are immutable. Components receive the instance they should use
    through their constructor; tests build their own instance instead of
    patching a global one.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        frozen=True,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Work Item Tracker")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8080)
    api_workers: int = Field(default=1)
    api_base_url: str = Field(
        default="http://localhost:8080",
        description="Absolute base URL used when rendering links to work items.",
    )

    # Database
    database_url: str = Field(default="sqlite:///./work_item_tracker.db")
    transaction_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for the duration of a single store transaction.",
    )

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    # Work items
    cache_control_work_items: str = Field(
        default="max-age=2",
        description="Value of the Cache-Control header on work item reads.",
    )
    supported_markups: List[str] = Field(
        default_factory=lambda: ["PlainText", "Markdown"],
    )
    default_markup: str = Field(
        default="PlainText",
        description="Markup applied to description input given as a bare string.",
    )

    def is_markup_supported(self, markup: str) -> bool:
        return markup in self.supported_markups


@lru_cache
def get_settings() -> Settings:
    """Get application settings."""
    return Settings()
