"""Logging setup for the service.

Two output modes, selected by the log environment:

    dev:  2026-01-15T13:45:12.345Z | INFO     | qr_generator | Starting server port=8080
    prod: {"ts":"2026-01-15T13:45:12.345Z","level":"INFO","logger":"qr_generator","msg":"Starting server","port":8080}

Structured fields are attached per call with ``extra={"fields": {...}}``.
The configured logger is returned to the caller and handed to each component
explicitly; nothing in the package looks it up by name.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

LOGGER_NAME = "qr_generator"

LEVELS: Dict[str, int] = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "dpanic": logging.CRITICAL,
    "panic": logging.CRITICAL,
    "fatal": logging.CRITICAL,
    "critical": logging.CRITICAL,
}

_COLORS = {
    "DEBUG": "\033[36m",
    "INFO": "\033[32m",
    "WARNING": "\033[33m",
    "ERROR": "\033[31m",
    "CRITICAL": "\033[35m",
}
_RESET = "\033[0m"


def parse_level(name: Optional[str]) -> int:
    if not name:
        return logging.INFO
    return LEVELS.get(name.strip().lower(), logging.INFO)


def _timestamp(record: logging.LogRecord) -> str:
    ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
    return ts.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = getattr(record, "fields", None)
    return dict(fields) if isinstance(fields, dict) else {}


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for key, value in _fields(record).items():
            entry.setdefault(key, value)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str, separators=(",", ":"))


class ConsoleFormatter(logging.Formatter):
    def __init__(self, use_color: bool = False) -> None:
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:8s}"
        if self.use_color:
            level = f"{_COLORS.get(record.levelname, '')}{level}{_RESET}"

        line = f"{_timestamp(record)} | {level} | {record.name} | {record.getMessage()}"
        fields = _fields(record)
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    env: str = "prod",
    level: str = "info",
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """Configure and return the service logger.

    Repeated calls replace the handler installed by the previous call rather
    than stacking a second one.
    """
    target = stream if stream is not None else sys.stderr
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(parse_level(level))
    logger.propagate = False

    for existing in list(logger.handlers):
        if getattr(existing, "_qr_generator_handler", False):
            logger.removeHandler(existing)

    handler = logging.StreamHandler(target)
    if env == "dev":
        isatty = getattr(target, "isatty", None)
        handler.setFormatter(ConsoleFormatter(use_color=bool(isatty and isatty())))
    else:
        handler.setFormatter(JsonFormatter())
    handler._qr_generator_handler = True  # type: ignore[attr-defined]
    logger.addHandler(handler)

    logger.info(
        "Logger initialized",
        extra={"fields": {"log_env": env, "log_level": logging.getLevelName(logger.level)}},
    )
    return logger
