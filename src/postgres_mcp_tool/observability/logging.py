"""Logging configuration for the PostgreSQL MCP tool.

Logs always go to stderr: stdout carries the MCP stdio protocol and any
stray write there corrupts the client's message stream.
"""

import json
import logging
import sys
from typing import Any, ClassVar

from postgres_mcp_tool.observability.tracing import RequestIdFilter

REDACTED = "***REDACTED***"

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None)).keys()
) | {"message", "asctime", "request_id"}


class SensitiveDataFilter(logging.Filter):
    """Mask credential values passed to loggers through ``extra`` or args.

    Example:
        >>> handler = logging.StreamHandler()
        >>> handler.addFilter(SensitiveDataFilter())
    """

    SENSITIVE_KEYS: ClassVar[set[str]] = {
        "password",
        "passwd",
        "pwd",
        "secret",
        "token",
        "access_token",
        "private_key",
        "dsn",
        "authorization",
    }

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, dict):
            record.args = self._sanitize(record.args)

        for key in list(vars(record)):
            if key in _RECORD_ATTRS:
                continue
            if key.lower() in self.SENSITIVE_KEYS:
                setattr(record, key, REDACTED)
            else:
                setattr(record, key, self._sanitize(getattr(record, key)))
        return True

    def _sanitize(self, data: Any) -> Any:
        """Recursively mask sensitive keys in dicts, lists and tuples."""
        if isinstance(data, dict):
            return {
                key: REDACTED if str(key).lower() in self.SENSITIVE_KEYS else self._sanitize(value)
                for key, value in data.items()
            }
        if isinstance(data, (list, tuple)):
            return type(data)(self._sanitize(item) for item in data)
        return data


class JSONFormatter(logging.Formatter):
    """One JSON object per line, suitable for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None)
        if request_id:
            log_data["request_id"] = request_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        extra_fields = {
            key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS
        }
        if extra_fields:
            log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable text formatter for development."""

    def format(self, record: logging.LogRecord) -> str:
        # Base format: timestamp [level] logger - message
        formatted = (
            f"{self.formatTime(record, self.datefmt)} "
            f"[{record.levelname}] "
            f"{record.name} - "
            f"{record.getMessage()}"
        )

        extra_fields = {
            key: value for key, value in vars(record).items() if key not in _RECORD_ATTRS
        }
        if extra_fields:
            formatted += " " + " ".join(f"{k}={v}" for k, v in extra_fields.items())

        request_id = getattr(record, "request_id", None)
        if request_id:
            formatted += f" [request_id={request_id}]"

        if record.exc_info:
            formatted += f"\n{self.formatException(record.exc_info)}"

        return formatted


def configure_logging(
    level: str = "INFO",
    log_format: str = "text",
    enable_sensitive_filter: bool = True,
) -> None:
    """Configure application logging on stderr.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_format: Format type ("json" or "text").
        enable_sensitive_filter: Whether to mask credential fields.

    Example:
        >>> configure_logging(level="DEBUG", log_format="json")
        >>> logging.getLogger(__name__).info("Pool opened", extra={"target": "staging"})
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stderr)

    formatter: logging.Formatter
    if log_format == "json":
        formatter = JSONFormatter(datefmt="%Y-%m-%dT%H:%M:%S")
    else:
        formatter = TextFormatter(datefmt="%Y-%m-%d %H:%M:%S")
    handler.setFormatter(formatter)

    handler.addFilter(RequestIdFilter())
    if enable_sensitive_filter:
        handler.addFilter(SensitiveDataFilter())

    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, level.upper()))

    # Reduce noise from third-party libraries
    for name in ("asyncpg", "mcp", "fastmcp"):
        logging.getLogger(name).setLevel(logging.WARNING)
