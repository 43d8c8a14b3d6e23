"""Logging setup driven by LoggingSettings.

Configures the root logger once per process with either a JSON or a plain
text formatter, and an optional file handler.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from .config import settings

_TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
_HANDLER_MARKER = "_intent_handler"


class JsonFormatter(logging.Formatter):
    """One JSON object per log record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _build_formatter(fmt: str) -> logging.Formatter:
    if fmt.lower() == "json":
        return JsonFormatter()
    return logging.Formatter(_TEXT_FORMAT)


def setup_logging(level: str | None = None, fmt: str | None = None) -> None:
    """Configure root logging from settings.

    Safe to call more than once: handlers installed by a previous call are
    replaced rather than duplicated.

    Args:
        level: Override for ``settings.logging.level``
        fmt: Override for ``settings.logging.format`` ("json" or "text")
    """
    level = (level or settings.logging.level).upper()
    formatter = _build_formatter(fmt or settings.logging.format)

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            root.removeHandler(handler)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.logging.file:
        handlers.append(logging.FileHandler(settings.logging.file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        setattr(handler, _HANDLER_MARKER, True)
        root.addHandler(handler)

    root.setLevel(level)

    # Client libraries are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)
