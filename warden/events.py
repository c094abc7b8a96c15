"""Structured event logging.

Every boot and shutdown step goes through ``log_event`` so the lines carry the
same fields (``service``, ``container``, ``image`` ...) regardless of which
component emitted them. Output is JSON lines by default, for the log
aggregator; ``WARDEN_LOG_FORMAT=text`` gives a human console format.
"""
from __future__ import annotations

import logging
import sys
from datetime import datetime, timezone
from typing import Any

from pythonjsonlogger.json import JsonFormatter

from .settings import Settings

TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
}


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class WardenJsonFormatter(JsonFormatter):
    """JSON formatter with an ISO timestamp, level and component name."""

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utc_now()
        log_record["level"] = record.levelname
        log_record["component"] = record.name


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def configure_logging(settings: Settings) -> None:
    """Install a single stdout handler on the ``warden`` logger tree."""
    root = logging.getLogger("warden")
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        handler.setFormatter(WardenJsonFormatter("%(message)s"))

    root.addHandler(handler)
    root.setLevel(_LEVELS.get(settings.log_level.upper(), logging.INFO))
    root.propagate = False


_logger = get_logger("warden.events")


def log_event(level: str, message: str, service_name: str | None = None, **fields: Any) -> None:
    extra: dict[str, Any] = {k: v for k, v in fields.items() if v is not None}
    if service_name:
        extra["service"] = service_name
    _logger.log(_LEVELS.get(level.upper(), logging.INFO), message, extra=extra)
