"""Logging setup: plain text on a terminal, JSON lines when hosted.

JSON records carry a ``severity`` field in place of ``levelname`` so log
collectors (Cloud Logging and similar) pick up the level.
"""

from __future__ import annotations

import logging
import os
import sys
import uuid

from pythonjsonlogger.json import JsonFormatter

# Python level names that differ from collector severity names.
_SEVERITY_ALIASES = {
    "NOTSET": "DEFAULT",
    "WARN": "WARNING",
    "FATAL": "CRITICAL",
}

_TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s:%(lineno)d  %(message)s"
_JSON_FIELDS = "%(message)s %(name)s %(funcName)s %(lineno)d"

# Chatty third-party loggers; polling would otherwise log every request.
_QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class SeverityJsonFormatter(JsonFormatter):
    """JSON formatter that emits ``severity`` instead of ``levelname``."""

    def add_fields(
        self,
        log_record: dict[str, object],
        record: logging.LogRecord,
        message_dict: dict[str, object],
    ) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["severity"] = _SEVERITY_ALIASES.get(record.levelname, record.levelname)
        log_record.pop("levelname", None)


def _build_handler(json_logs: bool) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    if json_logs:
        handler.setFormatter(SeverityJsonFormatter(fmt=_JSON_FIELDS, rename_fields={"name": "logger"}))
    else:
        handler.setFormatter(logging.Formatter(_TEXT_FORMAT, datefmt="%H:%M:%S"))
    return handler


def setup_logging(*, level: str = "INFO", json_logs: bool | None = None) -> None:
    """Replace the root logger's handlers with a single stderr handler.

    ``json_logs=None`` picks JSON only when running on Cloud Run.
    """
    if json_logs is None:
        json_logs = bool(os.getenv("K_SERVICE"))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.addHandler(_build_handler(json_logs))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def generate_request_id() -> str:
    """Short random id used to correlate listener requests in logs."""
    return uuid.uuid4().hex[:16]
