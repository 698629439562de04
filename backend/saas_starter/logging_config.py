# saas_starter/logging_config.py
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone

from .config import env_str, is_production

# Attributes every LogRecord carries; anything else came in via `extra=`
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _context(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _RESERVED}


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat()


class JsonFormatter(logging.Formatter):
    """One JSON object per line, for log aggregation in production."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": _timestamp(record),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        ctx = _context(record)
        if ctx:
            entry["context"] = ctx
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ReadableFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        line = f"[{_timestamp(record)}] {record.levelname}: {record.name}: {record.getMessage()}"
        ctx = _context(record)
        if ctx:
            line += f" {json.dumps(ctx, default=str)}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging() -> None:
    level = env_str("LOG_LEVEL", "INFO").upper()
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if is_production() else ReadableFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
