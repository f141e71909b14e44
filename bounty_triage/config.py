"""
Configuration management for Bounty Triage.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = Field(default="Bounty Triage")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # API
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=4000)
    api_workers: int = Field(default=1)

    # Database
    database_url: str = Field(default="sqlite:///./bounty_triage.db")

    # GitHub
    github_org: str = Field(default="")
    github_token: Optional[str] = Field(default=None)
    github_api_url: str = Field(default="https://api.github.com")
    github_repos: str = Field(
        default="",
        description="Comma-separated list of repositories to mirror (e.g. 'bugtracker,web').",
    )
    github_per_page: int = Field(default=100, ge=1, le=100)
    github_request_timeout_seconds: float = Field(default=15.0, gt=0)

    # Sync
    sync_enabled: bool = Field(default=True)
    sync_on_startup: bool = Field(default=True)
    sync_interval_seconds: int = Field(default=60, ge=1)
    sync_repo_timeout_seconds: float = Field(default=120.0, gt=0)
    sync_max_workers: int = Field(default=4, ge=1)

    # Review / scoring
    review_max_retries: int = Field(default=5, ge=1)
    leaderboard_default_limit: int = Field(default=50, ge=1)
    leaderboard_max_limit: int = Field(default=200, ge=1)

    # Logging
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")

    @property
    def repositories(self) -> List[str]:
        """Configured repository names, in declaration order."""
        return [name.strip() for name in self.github_repos.split(",") if name.strip()]


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get application settings."""
    return settings
