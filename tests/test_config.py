"""Tests for application settings."""

import logging

import pytest
from pydantic import ValidationError

from branchtale.config import Settings


class TestSettings:
    """Tests for Settings defaults and validators."""

    def test_defaults(self, monkeypatch):
        """Test the documented defaults."""
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.delenv("PR_AUTO_APPROVE_THRESHOLD", raising=False)
        s = Settings(_env_file=None)
        assert s.DATABASE_URL == "sqlite+aiosqlite:///./branchtale.db"
        assert s.PR_AUTO_APPROVE_THRESHOLD == 10
        assert s.PR_AUTO_APPROVE_WINDOW_DAYS == 7
        assert s.PR_TITLE_MAX_LENGTH == 200

    def test_env_override(self, monkeypatch):
        """Test values are read from the environment."""
        monkeypatch.setenv("PR_AUTO_APPROVE_THRESHOLD", "3")
        s = Settings(_env_file=None)
        assert s.PR_AUTO_APPROVE_THRESHOLD == 3

    def test_rejects_non_positive_threshold(self):
        """Test a zero threshold is refused."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, PR_AUTO_APPROVE_THRESHOLD=0)

    def test_rejects_non_positive_window(self):
        """Test a zero window is refused."""
        with pytest.raises(ValidationError):
            Settings(_env_file=None, PR_AUTO_APPROVE_WINDOW_DAYS=0)

    def test_warns_when_slack_enabled_without_token(self, caplog):
        """Test enabling Slack without a token logs a warning."""
        with caplog.at_level(logging.WARNING):
            Settings(_env_file=None, SLACK_NOTIFICATIONS_ENABLED=True, SLACK_BOT_TOKEN="")
        assert "SLACK_BOT_TOKEN is empty" in caplog.text

    def test_log_level(self):
        """Test LOG_LEVEL maps to a logging level with an INFO fallback."""
        assert Settings(_env_file=None, LOG_LEVEL="debug").log_level == logging.DEBUG
        assert Settings(_env_file=None, LOG_LEVEL="chatty").log_level == logging.INFO
