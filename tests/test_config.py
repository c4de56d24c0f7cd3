"""AppConfig loading and the service composition root."""

from __future__ import annotations

import logging

from portal_auth.config import AppConfig, is_valid_http_url
from portal_auth.services import create_auth_services


def _config(**overrides) -> AppConfig:
    return AppConfig(_env_file=None, **overrides)


class TestAppConfig:
    def test_defaults(self, monkeypatch):
        for name in ("SUPABASE_URL", "SUPABASE_ANON_KEY", "PROFILE_STORE_URL", "APP_URL", "LOG_LEVEL"):
            monkeypatch.delenv(name, raising=False)

        config = _config()

        assert config.PROFILE_STORE_TIMEOUT_S == 10.0
        assert config.PROFILE_STORE_MAX_ATTEMPTS == 3
        assert config.PROFILE_STORE_BACKOFF_BASE_S == 1.0
        assert config.supabase_configured is False
        assert config.password_reset_url == "http://localhost:3000/reset-password"

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("SUPABASE_URL", "https://proj.supabase.co")
        monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
        monkeypatch.setenv("PROFILE_STORE_MAX_ATTEMPTS", "5")

        config = _config()

        assert config.supabase_configured is True
        assert config.SUPABASE_ANON_KEY.get_secret_value() == "anon-key"
        assert config.PROFILE_STORE_MAX_ATTEMPTS == 5

    def test_strips_quotes_from_env_values(self):
        config = _config(
            SUPABASE_URL='"https://proj.supabase.co"',
            SUPABASE_ANON_KEY="'anon-key'",
        )

        assert config.SUPABASE_URL == "https://proj.supabase.co"
        assert config.SUPABASE_ANON_KEY.get_secret_value() == "anon-key"

    def test_non_http_url_is_not_configured(self):
        config = _config(SUPABASE_URL="proj.supabase.co", SUPABASE_ANON_KEY="anon-key")

        assert config.supabase_configured is False

    def test_password_reset_url_joins_cleanly(self):
        config = _config(APP_URL="https://portal.example/", PASSWORD_RESET_PATH="reset-password")

        assert config.password_reset_url == "https://portal.example/reset-password"

    def test_log_level(self):
        assert _config(LOG_LEVEL="debug").log_level == logging.DEBUG
        assert _config(LOG_LEVEL="nonsense").log_level == logging.INFO

    def test_missing_settings_are_warned(self, caplog):
        with caplog.at_level(logging.WARNING, logger="portal_auth.config"):
            _config(SUPABASE_URL="", PROFILE_STORE_URL="")

        messages = " ".join(r.getMessage() for r in caplog.records)
        assert "SUPABASE_URL" in messages
        assert "PROFILE_STORE_URL" in messages


def test_is_valid_http_url():
    assert is_valid_http_url("https://proj.supabase.co")
    assert is_valid_http_url("http://localhost:8080")
    assert not is_valid_http_url("")
    assert not is_valid_http_url("ftp://files.example")
    assert not is_valid_http_url("https://")


class TestCreateAuthServices:
    def test_wires_configured_services(self):
        config = _config(
            SUPABASE_URL="https://proj.supabase.co",
            SUPABASE_ANON_KEY="anon-key",
            PROFILE_STORE_URL="http://profile-store.test",
            APP_URL="https://portal.example",
        )

        services = create_auth_services(config)

        assert services["identity"].is_configured is True
        assert services["reconciler"].cache is services["cache"]
        assert services["reconciler"]._password_reset_url == "https://portal.example/reset-password"
        assert services["profile_store"]._max_attempts == 3

    def test_unconfigured_identity(self):
        services = create_auth_services(_config(SUPABASE_URL="", SUPABASE_ANON_KEY=""))

        assert services["identity"].is_configured is False
