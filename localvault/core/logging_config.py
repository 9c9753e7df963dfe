"""
Logging infrastructure for LocalVault.

Structured logging that never leaks secret payloads. Records carry the
correlation id of the HTTP request or long-running operation they were
emitted under, so one delete can be followed from request to purge.

Author: LocalVault Team
Date: 2026-10-19
"""

import logging
import logging.handlers
import json
import sys
import re
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

REDACTED = "***REDACTED***"

# Keys whose values are masked wherever they appear in structured context
SENSITIVE_KEYS = frozenset({"value", "password", "client_secret", "authorization"})

_correlation_id: ContextVar[Optional[str]] = ContextVar("localvault_correlation_id", default=None)


def current_correlation_id() -> Optional[str]:
    """Return the correlation id of the running request or operation, if any."""
    return _correlation_id.get()


@contextmanager
def correlation_scope(corr_id: Optional[str] = None) -> Iterator[str]:
    """Tag every record logged inside the block with a correlation id.

    A fresh id is generated when none is given. The previous id is restored
    on exit, so scopes nest.
    """
    corr_id = corr_id or uuid.uuid4().hex
    token = _correlation_id.set(corr_id)
    try:
        yield corr_id
    finally:
        _correlation_id.reset(token)


class SensitiveDataFilter(logging.Filter):
    """Mask secret values and credentials in messages and structured context."""

    PATTERNS = [
        (re.compile(r'(Authorization:\s+)(?:Bearer\s+)?\S+', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(["\']?value["\']?\s*[:=]\s*["\']?)[^"\'\s,}]+', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(password["\']?\s*[:=]\s*["\']?)\S+', re.IGNORECASE), r'\1' + REDACTED),
        (re.compile(r'(client_secret["\']?\s*[:=]\s*["\']?)\S+', re.IGNORECASE), r'\1' + REDACTED),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            for pattern, replacement in self.PATTERNS:
                record.msg = pattern.sub(replacement, record.msg)

        context = getattr(record, "context", None)
        if isinstance(context, dict):
            record.context = {
                key: REDACTED if key.lower() in SENSITIVE_KEYS else value
                for key, value in context.items()
            }
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "message": record.getMessage(),
        }
        corr_id = current_correlation_id()
        if corr_id:
            log_data["correlation_id"] = corr_id
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        if hasattr(record, "context"):
            log_data["context"] = record.context
        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines, suffixed with the correlation id when one is set."""

    def __init__(self):
        super().__init__(
            fmt="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        corr_id = current_correlation_id()
        return f"{line} [{corr_id}]" if corr_id else line


def _attach(root: logging.Logger, handler: logging.Handler, formatter: logging.Formatter) -> None:
    handler.setLevel(logging.DEBUG)
    handler.setFormatter(formatter)
    handler.addFilter(SensitiveDataFilter())
    root.addHandler(handler)


def setup_logging(
    level: str = "INFO",
    format_type: str = "json",
    log_file: Optional[str] = None,
    rotation_size: str = "10MB",
    rotation_count: int = 5,
    module_levels: Optional[Dict[str, str]] = None
) -> None:
    """
    Configure LocalVault logging.

    Replaces any handlers already on the root logger.

    Args:
        level: Default log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Log format ("json" or "text")
        log_file: Optional file path for log output
        rotation_size: Size limit for log rotation (e.g., "10MB")
        rotation_count: Number of rotated log files to keep
        module_levels: Optional dict of module-specific log levels
                      e.g., {"localvault.secrets.poller": "DEBUG"}
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    formatter = JSONFormatter() if format_type == "json" else TextFormatter()
    _attach(root_logger, logging.StreamHandler(sys.stdout), formatter)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_file,
            maxBytes=_parse_size(rotation_size),
            backupCount=rotation_count,
            encoding='utf-8'
        )
        _attach(root_logger, file_handler, formatter)
        root_logger.info(f"Logging to file: {log_file} (rotation: {rotation_size}, count: {rotation_count})")

    for module_name, module_level in (module_levels or {}).items():
        logging.getLogger(module_name).setLevel(getattr(logging, module_level.upper()))

    root_logger.debug(f"Logging configured: level={level}, format={format_type}")


def _parse_size(size_str: str) -> int:
    """Convert a size such as "10MB" or "512KB" to bytes."""
    size_str = size_str.upper().strip()

    # Longer suffixes first so 'B' does not match 'MB'
    for suffix, multiplier in (('GB', 1024 ** 3), ('MB', 1024 ** 2), ('KB', 1024), ('B', 1)):
        if size_str.endswith(suffix):
            return int(float(size_str[:-len(suffix)].strip()) * multiplier)

    return int(size_str)


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module."""
    return logging.getLogger(name)


def log_with_context(logger: logging.Logger, level: int, message: str, **context: Any) -> None:
    """
    Log a message with structured context.

    Args:
        logger: Logger instance
        level: Log level
        message: Log message
        **context: Fields attached to the record as ``context``; sensitive
            keys are masked by SensitiveDataFilter
    """
    extra = {"context": context} if context else {}
    logger.log(level, message, extra=extra)
