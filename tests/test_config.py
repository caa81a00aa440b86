"""
Tests for settings defaults and cross-field validation.
"""
import pytest
from pydantic import ValidationError

from task_monitor.core.config import Settings


class TestSettings:

    def test_defaults(self):
        settings = Settings(_env_file=None)

        assert settings.DB_POOL_MAX == 20
        assert settings.PAGINATION_DEFAULT_LIMIT == 50
        assert settings.PAGINATION_MAX_LIMIT == 100
        assert settings.AUTO_CLEAR_INTERVAL_SECONDS == 3600
        assert settings.AUTO_CLEAR_INITIAL_DELAY_SECONDS == 5
        assert settings.AUTO_CLEAR_COMPLETED is True
        assert settings.AUTO_CLEAR_FAILED is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PAGINATION_MAX_LIMIT", "200")
        monkeypatch.setenv("DB_POOL_MAX", "5")

        settings = Settings(_env_file=None)

        assert settings.PAGINATION_MAX_LIMIT == 200
        assert settings.DB_POOL_MAX == 5

    def test_default_limit_above_max_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, PAGINATION_DEFAULT_LIMIT=150, PAGINATION_MAX_LIMIT=100)

    def test_non_positive_interval_rejected(self):
        with pytest.raises(ValidationError):
            Settings(_env_file=None, AUTO_CLEAR_INTERVAL_SECONDS=0)

    def test_initial_delay_must_be_shorter_than_interval(self):
        with pytest.raises(ValidationError):
            Settings(
                _env_file=None,
                AUTO_CLEAR_INTERVAL_SECONDS=10,
                AUTO_CLEAR_INITIAL_DELAY_SECONDS=10,
            )
