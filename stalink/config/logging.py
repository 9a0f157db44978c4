"""Logging helpers for the stalink daemon.

Every record is rendered as one JSON object per line so the output can be
shipped to syslog and parsed back without guessing at message formats.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime, timezone
from logging import Handler
from logging.config import dictConfig
from logging.handlers import SysLogHandler
from pathlib import Path
from typing import Any

import msgspec

from .model import RuntimeConfig

SYSLOG_SOCKETS: tuple[Path, ...] = (Path("/dev/log"), Path("/var/run/log"))
LOG_STREAM_ENV = "STALINK_LOG_STREAM"
REDACTED = "***"

# Attributes every LogRecord carries; anything else arrived through ``extra=``.
_RECORD_ATTRIBUTES = frozenset(
    logging.LogRecord("", 0, "", 0, "", None, None).__dict__
) | {"message", "asctime", "taskName"}
_SENSITIVE_KEYS = ("secret", "password", "passwd", "psk")


def _render_extra(key: str, value: Any) -> Any:
    if any(marker in key.lower() for marker in _SENSITIVE_KEYS):
        return REDACTED
    if isinstance(value, (str, int, float, bool)) or value is None:
        return value
    if isinstance(value, (bytes, bytearray, memoryview)):
        # Binary values (BSSIDs, image digests) are shown as hex, never decoded.
        return bytes(value).hex(":" if len(value) <= 8 else " ").upper()
    if isinstance(value, msgspec.Struct):
        return msgspec.to_builtins(value, enc_hook=str)
    return str(value)


def _current_task_name() -> str | None:
    try:
        task = asyncio.current_task()
    except RuntimeError:
        return None
    return task.get_name() if task is not None else None


class StructuredLogFormatter(logging.Formatter):
    """Emit one JSON document per record with the package prefix trimmed."""

    PREFIX = "stalink."

    def format(self, record: logging.LogRecord) -> str:
        name = record.name.removeprefix(self.PREFIX)
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)

        payload: dict[str, Any] = {
            "ts": timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": name,
            "message": record.getMessage(),
        }
        task_name = _current_task_name()
        if task_name:
            payload["task"] = task_name

        extra = {
            key: _render_extra(key, value)
            for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        return msgspec.json.encode(payload).decode("utf-8")


def _build_handler() -> Handler:
    if os.environ.get(LOG_STREAM_ENV):
        return logging.StreamHandler()

    socket_path = next((path for path in SYSLOG_SOCKETS if path.exists()), None)
    if socket_path is None:
        return logging.StreamHandler()

    handler = SysLogHandler(address=str(socket_path), facility=SysLogHandler.LOG_DAEMON)
    handler.ident = "stalink "
    return handler


def configure_logging(config: RuntimeConfig) -> None:
    """Install the structured handler on the root logger."""

    level_name = "DEBUG" if config.debug_logging else "INFO"
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "structured": {"()": "stalink.config.logging.StructuredLogFormatter"},
            },
            "handlers": {
                "stalink": {
                    "()": _build_handler,
                    "level": level_name,
                    "formatter": "structured",
                }
            },
            "root": {"level": level_name, "handlers": ["stalink"]},
            # transitions logs every trigger at INFO; keep it for debug sessions only.
            "loggers": {"transitions": {"level": "DEBUG" if config.debug_logging else "WARNING"}},
        }
    )

    logging.getLogger("stalink").info("Logging configured at level %s", level_name)


__all__ = ["StructuredLogFormatter", "configure_logging"]
