"""Logging configuration helpers."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(threadName)s | %(name)s | %(message)s"


class JsonFormatter(logging.Formatter):
    """Emit one JSON object per log line, including any ``extra`` fields."""

    _standard_attrs = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 - logging interface name
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = record.stack_info

        extras = {key: value for key, value in record.__dict__.items() if key not in self._standard_attrs}
        payload.update(extras)
        return json.dumps(payload, default=str)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure the root logger.

    ``LOG_LEVEL`` and ``LOG_FORMAT`` (``json`` or ``text``) environment
    variables win over the arguments.
    """

    level_name = os.getenv("LOG_LEVEL") or level or "INFO"
    resolved = getattr(logging, level_name.upper(), logging.INFO)
    format_name = (os.getenv("LOG_FORMAT") or fmt or "json").lower()

    root = logging.getLogger()
    root.setLevel(resolved)
    root.handlers.clear()

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(TEXT_FORMAT) if format_name == "text" else JsonFormatter())
    root.addHandler(handler)

    # requests' connection pool logs every request at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


__all__ = ["JsonFormatter", "configure_logging"]
