# Structured JSON logging for the compute job and storage layer.
# Every extra= key is copied into the payload so operation, snapshot_id
# and unit_id show up next to the message.

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any


_STANDARD_ATTRS = {
    "args",
    "asctime",
    "created",
    "exc_info",
    "exc_text",
    "filename",
    "funcName",
    "levelname",
    "levelno",
    "lineno",
    "module",
    "msecs",
    "message",
    "msg",
    "name",
    "pathname",
    "process",
    "processName",
    "relativeCreated",
    "stack_info",
    "taskName",
    "thread",
    "threadName",
}

_ALWAYS_FIELDS = {
    "operation",
    "snapshot_id",
    "unit_id",
}


class JsonLogFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            if value is None and key not in _ALWAYS_FIELDS:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, default=str)


_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JsonLogFormatter()
    return logging.Formatter(_PLAIN_FORMAT)


def get_structured_logger(name: str, json_format: bool | None = None) -> logging.Logger:
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger
    if json_format is None:
        json_format = os.getenv("LOG_JSON", "true").lower() not in {"0", "false", "no"}
    handler = logging.StreamHandler()
    handler.setFormatter(_formatter(json_format))
    logger.addHandler(handler)
    logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    return logger


def configure_logging(level: str | None = None, json_format: bool | None = None) -> logging.Logger:
    """Install the structured handler on the package root logger.

    Module loggers (``logging.getLogger(__name__)``) propagate up to it, so
    library code never has to know whether it runs inside the job. Explicit
    settings win over the environment, also when the handler already exists.
    """
    root = get_structured_logger("district_analytics", json_format)
    if json_format is not None:
        for handler in root.handlers:
            handler.setFormatter(_formatter(json_format))
    if level:
        root.setLevel(level.upper())
    return root
