"""
Structured JSON Logging Module.

Every log line is a single JSON object so the auth audit trail can be
shipped to any log collector without parsing.  Credentials passed as
structured ``extra`` fields (passwords, tokens, API keys) are redacted
before they are serialised.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

REDACTED: str = "***"

# Matched case-insensitively against ``extra`` keys.
_SENSITIVE_KEYS: frozenset[str] = frozenset({
    "password",
    "new_password",
    "access_token",
    "refresh_token",
    "authorization",
    "apikey",
    "api_key",
    "supabase_anon_key",
})


def _json_safe(value: Any) -> Any:
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


class JSONFormatter(logging.Formatter):
    """Formats log records as structured JSON objects.

    Each entry carries ``timestamp`` (ISO-8601, UTC), ``level``,
    ``logger_name`` and ``message``; caller-supplied ``extra`` fields
    appear under ``extra`` and a traceback, if any, under ``exception``.
    """

    _STANDARD_ATTRS: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__.keys()
    ) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger_name": record.name,
            "message": record.getMessage(),
        }

        extra_fields: dict[str, Any] = {
            key: REDACTED if key.lower() in _SENSITIVE_KEYS else _json_safe(value)
            for key, value in record.__dict__.items()
            if key not in self._STANDARD_ATTRS
        }
        if extra_fields:
            entry["extra"] = extra_fields

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


def _attach_file_handler(
    logger: logging.Logger,
    formatter: logging.Formatter,
    level: int,
    log_file: str,
    max_bytes: int,
    backup_count: int,
) -> None:
    """Add a rotating file handler, falling back to console-only on OS errors."""
    try:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
    except OSError as exc:
        logger.warning(
            "Could not create log file '%s': %s. Continuing with console logging only.",
            log_file,
            exc,
        )
        return
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)


class StructuredLogger:
    """Injectable JSON logger.

    Instantiate once per component and pass it to constructors; the
    wrapped ``logging.Logger`` is reachable through ``.logger``.

    Usage::

        log = StructuredLogger(name="portal_auth.session")
        log.info("User signed in", extra={"event": "LOGIN", "user_id": "u1"})

    Level, log file and rotation default to ``AppConfig`` (``LOG_LEVEL``,
    ``LOG_FILE``, ``LOG_MAX_BYTES``, ``LOG_BACKUP_COUNT``).  Handlers are
    attached only the first time a given *name* is configured.
    """

    def __init__(
        self,
        name: str = "portal_auth",
        level: Optional[int] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        # Lazy import to avoid circular dependency at module level
        from portal_auth.config import get_config
        cfg = get_config()

        resolved_level: int = level if level is not None else cfg.log_level
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(resolved_level)

        if self._logger.handlers:
            return

        formatter = JSONFormatter()
        stream_handler = logging.StreamHandler(stream or sys.stdout)
        stream_handler.setLevel(resolved_level)
        stream_handler.setFormatter(formatter)
        self._logger.addHandler(stream_handler)

        resolved_log_file = log_file or cfg.LOG_FILE
        if resolved_log_file:
            _attach_file_handler(
                self._logger,
                formatter,
                resolved_level,
                resolved_log_file,
                max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
            )

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "portal_auth") -> StructuredLogger:
    """Return a ``StructuredLogger`` for *name*, configured from ``AppConfig``."""
    return StructuredLogger(name=name)
