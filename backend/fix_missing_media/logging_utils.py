from __future__ import annotations

import json
import logging
from logging.config import dictConfig
from typing import Any, Dict

_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
    }
)


class JSONFormatter(logging.Formatter):
    """
    Render log records as JSON strings, preserving structured extras.
    """

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting only
        data = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": self.formatTime(record, self.datefmt),
        }
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and value is not None
        }
        if extras:
            data["context"] = extras
        return json.dumps(data, ensure_ascii=False, default=str)


def setup_logging(level: str = "INFO") -> None:
    """
    Configure global logging to emit JSON lines, tagged with the attachment
    and batch currently being processed. Safe to call multiple times.
    """

    resolved = (level or "INFO").strip().upper()
    if resolved not in logging.getLevelNamesMapping():
        resolved = "INFO"

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "attachment_context": {
                "()": "fix_missing_media.logging_context.AttachmentContextFilter",
            }
        },
        "formatters": {
            "json": {
                "()": "fix_missing_media.logging_utils.JSONFormatter",
                "datefmt": "%Y-%m-%dT%H:%M:%S%z",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "filters": ["attachment_context"],
                "level": resolved,
            }
        },
        "root": {
            "handlers": ["default"],
            "level": resolved,
        },
        "loggers": {
            "httpx": {"level": "WARNING"},
            "httpcore": {"level": "WARNING"},
        },
    }
    dictConfig(config)
