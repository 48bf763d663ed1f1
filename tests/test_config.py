"""Tests for configuration system."""

import pytest
from pydantic import ValidationError

from cleanmeter.config import Settings, get_settings


class TestSettings:
    """Test environment-driven settings."""

    def test_defaults(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)

        settings = Settings()

        assert settings.store_backend == "memory"
        assert settings.redis_url is None
        assert settings.scan_lock_ttl_seconds == 600
        assert settings.port == 8000

    def test_environment_overrides(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CLEANMETER_STORE_BACKEND", "postgres")
        monkeypatch.setenv("CLEANMETER_DATABASE_URL", "postgresql://u:p@db/cm")
        monkeypatch.setenv("CLEANMETER_PORT", "9100")
        monkeypatch.setenv("CLEANMETER_LOG_JSON", "false")

        settings = Settings()

        assert settings.store_backend == "postgres"
        assert settings.database_url == "postgresql://u:p@db/cm"
        assert settings.port == 9100
        assert settings.log_json is False

    def test_env_file(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        (tmp_path / ".env").write_text("CLEANMETER_JWT_SECRET=from-file\n")

        assert Settings().jwt_secret == "from-file"

    def test_invalid_backend(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CLEANMETER_STORE_BACKEND", "sqlite")

        with pytest.raises(ValidationError):
            Settings()

    def test_get_settings_is_cached(self):
        get_settings.cache_clear()
        try:
            assert get_settings() is get_settings()
        finally:
            get_settings.cache_clear()
