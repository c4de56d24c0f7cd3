"""
Application Configuration.

Pydantic Settings model for the portal auth package.
All configuration is loaded from environment variables and .env files.
Inject an AppConfig instance via dependency injection where needed.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings


def is_valid_http_url(url: str) -> bool:
    """``True`` when *url* is an absolute http(s) URL with a host."""
    if not url or not url.strip():
        return False
    parsed = urlparse(url.strip())
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class AppConfig(BaseSettings):
    """Central configuration loaded from environment variables and defaults."""

    # --- Supabase (identity provider) ---
    SUPABASE_URL: str = ""
    SUPABASE_ANON_KEY: SecretStr = SecretStr("")

    # --- Profile Store ---
    PROFILE_STORE_URL: str = ""
    PROFILE_STORE_TIMEOUT_S: float = 10.0
    PROFILE_STORE_MAX_ATTEMPTS: int = 3
    PROFILE_STORE_BACKOFF_BASE_S: float = 1.0

    # --- Password reset ---
    APP_URL: str = "http://localhost:3000"
    PASSWORD_RESET_PATH: str = "/reset-password"

    # --- Logging ---
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = ""  # empty = console only
    LOG_MAX_BYTES: int = 5_242_880  # 5 MB
    LOG_BACKUP_COUNT: int = 3

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    @field_validator(
        "SUPABASE_URL", "SUPABASE_ANON_KEY", "PROFILE_STORE_URL", "APP_URL",
        mode="before",
    )
    @classmethod
    def _strip_quotes(cls, value: Any) -> Any:
        """Drop surrounding quotes left over from hand-edited ``.env`` files."""
        if isinstance(value, str):
            return value.strip().strip("\"'")
        return value

    @model_validator(mode="after")
    def _warn_missing_env(self) -> "AppConfig":
        """Emit a startup warning when critical configuration is empty.

        Pydantic silently falls back to defaults when ``.env`` is missing,
        so operators get a log line instead of a silent failure later.
        """
        _log = logging.getLogger("portal_auth.config")

        if not Path(".env").exists():
            _log.warning(
                "No .env file found; all configuration loaded from "
                "environment variables or defaults."
            )

        if not self.supabase_configured:
            _log.warning(
                "SUPABASE_URL / SUPABASE_ANON_KEY missing or invalid; "
                "authentication calls will fail with NotConfigured."
            )

        if not is_valid_http_url(self.PROFILE_STORE_URL):
            _log.warning(
                "PROFILE_STORE_URL is empty or invalid; profile "
                "provisioning will not reach the Profile Store."
            )

        return self

    @property
    def supabase_configured(self) -> bool:
        """``True`` when both the Supabase URL and anon key are usable."""
        return (
            is_valid_http_url(self.SUPABASE_URL)
            and bool(self.SUPABASE_ANON_KEY.get_secret_value().strip())
        )

    @property
    def password_reset_url(self) -> str:
        """Absolute redirect target for password-reset emails."""
        return f"{self.APP_URL.rstrip('/')}/{self.PASSWORD_RESET_PATH.lstrip('/')}"

    @property
    def log_level(self) -> int:
        """Numeric logging level for ``LOG_LEVEL`` (defaults to INFO)."""
        level = logging.getLevelName(self.LOG_LEVEL.upper())
        return level if isinstance(level, int) else logging.INFO


# ---------------------------------------------------------------------------
# Module-level singleton factory
# ---------------------------------------------------------------------------

_config_instance: Optional[AppConfig] = None
_config_lock: threading.Lock = threading.Lock()


def get_config() -> AppConfig:
    """Return a cached ``AppConfig`` singleton.

    On first call, creates an ``AppConfig`` instance (reading from ``.env``).
    Subsequent calls return the same instance.  Prefer constructor
    injection of ``AppConfig`` in new code.
    """
    global _config_instance
    if _config_instance is None:
        with _config_lock:
            if _config_instance is None:
                _config_instance = AppConfig()
    return _config_instance
