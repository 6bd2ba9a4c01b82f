"""Logging configuration helpers."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

_LEVEL_ALIASES = {"warn": "WARNING"}


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per record; ``extra`` fields become top-level keys."""

    _standard_attrs = set(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 - logging interface name
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        extras = {key: value for key, value in record.__dict__.items() if key not in self._standard_attrs}
        payload.update(extras)
        return json.dumps(payload, default=str)


class TextFormatter(logging.Formatter):
    """Human readable lines with ``key=value`` extras appended."""

    _standard_attrs = JsonFormatter._standard_attrs

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 - logging interface name
        line = super().format(record)
        extras = " ".join(
            f"{key}={value}" for key, value in record.__dict__.items() if key not in self._standard_attrs
        )
        return f"{line} {extras}" if extras else line


def resolve_level(name: str) -> int:
    level_name = _LEVEL_ALIASES.get(name.lower(), name.upper())
    level = getattr(logging, level_name, None)
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None, fmt: str = "json", default_level: str = "INFO") -> None:
    """Configure the root logger; ``LOG_LEVEL`` wins when ``level`` is unset."""

    resolved = resolve_level(level or os.getenv("LOG_LEVEL", default_level))

    root = logging.getLogger()
    root.setLevel(resolved)
    root.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(TextFormatter() if fmt.lower() == "text" else JsonFormatter())
    root.addHandler(handler)


__all__ = ["JsonFormatter", "TextFormatter", "configure_logging", "resolve_level"]
