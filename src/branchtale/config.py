"""Configuration management using pydantic-settings."""

import logging

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    APP_NAME: str = "Branchtale"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    APP_BASE_URL: str = "http://localhost:3000"  # Prefix for absolute links in Slack messages

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./branchtale.db"

    # Pull requests
    PR_AUTO_APPROVE_THRESHOLD: int = 10  # Net vote score needed for auto-approval
    PR_AUTO_APPROVE_WINDOW_DAYS: int = 7  # Days after creation in which votes count
    PR_TITLE_MAX_LENGTH: int = 200
    PR_DESCRIPTION_MAX_LENGTH: int = 2000
    CONTENT_MAX_LENGTH: int = 100_000  # Proposed/original chapter content cap

    # Slack delivery of notifications
    SLACK_BOT_TOKEN: str = ""  # xoxb-...
    SLACK_NOTIFICATIONS_ENABLED: bool = False

    @property
    def log_level(self) -> int:
        """Numeric logging level for LOG_LEVEL (falls back to INFO)."""
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO

    @model_validator(mode="after")
    def check_slack_settings(self) -> "Settings":
        """Warn when Slack delivery is switched on without a bot token."""
        if self.SLACK_NOTIFICATIONS_ENABLED and not self.SLACK_BOT_TOKEN:
            logging.warning(
                "SLACK_NOTIFICATIONS_ENABLED is set but SLACK_BOT_TOKEN is empty; "
                "notifications will only be stored"
            )
        return self

    @model_validator(mode="after")
    def check_auto_approve_settings(self) -> "Settings":
        """Reject non-positive auto-approve parameters."""
        if self.PR_AUTO_APPROVE_THRESHOLD < 1:
            raise ValueError("PR_AUTO_APPROVE_THRESHOLD must be >= 1")
        if self.PR_AUTO_APPROVE_WINDOW_DAYS < 1:
            raise ValueError("PR_AUTO_APPROVE_WINDOW_DAYS must be >= 1")
        return self


settings = Settings()
