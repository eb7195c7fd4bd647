"""
Structured JSON logging utilities.

Components log through the standard ``logging`` module under the
``resilient_ipfs_storage`` namespace. This module adds a single-line JSON
formatter for log shippers, per-component loggers that carry context such
as the cache path, and the switches behind the ``debug_mode`` and
``log_json`` settings.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

PACKAGE_LOGGER = "resilient_ipfs_storage"

# Attributes every LogRecord has; anything else arrived through ``extra``
_RECORD_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


class StructuredJsonFormatter(logging.Formatter):
    """
    One JSON object per line.

    Fields: ``timestamp`` (UTC, from the record's creation time), ``level``,
    ``logger``, ``message``, ``exception`` when present, then any context
    passed through ``extra`` (endpoint, cache_path, from_state, ...).
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRS or key.startswith("_"):
                continue
            entry[key] = value if _is_json_value(value) else str(value)

        return json.dumps(entry)


def _is_json_value(value: Any) -> bool:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return False
    return True


def configure_structured_logging(
    level: int = logging.INFO,
    logger_name: str | None = PACKAGE_LOGGER,
) -> logging.Logger:
    """
    Send the package's logs to stdout as JSON lines.

    Replaces any handlers already on the logger, so calling it twice does
    not duplicate output.
    """
    logger = logging.getLogger(logger_name)
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    logger.addHandler(handler)
    logger.setLevel(level)

    return logger


def apply_logging_settings(*, json_output: bool, debug: bool) -> None:
    """Apply the ``log_json`` and ``debug_mode`` settings to the package logger."""
    if json_output:
        configure_structured_logging(logging.DEBUG if debug else logging.INFO)
    elif debug:
        set_debug_mode(True)


def set_debug_mode(enabled: bool) -> None:
    """Switch the package logger between DEBUG and its inherited level."""
    logging.getLogger(PACKAGE_LOGGER).setLevel(logging.DEBUG if enabled else logging.NOTSET)


class StorageLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that tags every line with fixed component context.

    Per-call ``extra`` values win over the adapter's context on key clashes.
    """

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def get_storage_logger(component: str, **context: Any) -> StorageLoggerAdapter:
    """
    Logger for a component, named ``resilient_ipfs_storage.{component}``.

    Keyword arguments become context fields on every line it emits.
    """
    return StorageLoggerAdapter(logging.getLogger(f"{PACKAGE_LOGGER}.{component}"), context)
