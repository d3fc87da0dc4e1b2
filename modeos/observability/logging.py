"""
Logging setup for the mode engine.

Every record emitted inside an EvaluationContext is stamped with that
evaluation's id, so a single publication can be followed from calendar fetch
to audit event. Services get one JSON object per line; terminals get a
compact human line.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any

from .context import get_evaluation_id

# Attributes every LogRecord carries; anything else came in through extra=.
_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {
    "message",
    "asctime",
    "evaluation_id",
}


def _evaluation_id(record: logging.LogRecord) -> str | None:
    return getattr(record, "evaluation_id", None) or get_evaluation_id()


def _extras(record: logging.LogRecord) -> dict[str, Any]:
    return {k: v for k, v in record.__dict__.items() if k not in _STANDARD_ATTRS}


class EvaluationIdFilter(logging.Filter):
    """Copies the active evaluation id onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "evaluation_id", None):
            record.evaluation_id = get_evaluation_id()
        return True


class JSONFormatter(logging.Formatter):
    """
    One JSON object per record:

        {"timestamp": "2026-03-02T09:00:00.000Z", "level": "INFO",
         "logger": "modeos.modes.scheduler", "message": "Mode decision published: prep (high)",
         "evaluation_id": "eval-1a2b3c4d5e6f", "trigger": "app_open", "new_mode": "prep"}

    Fields passed through ``extra=`` are emitted at the top level.
    """

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, UTC)
        payload: dict[str, Any] = {
            "timestamp": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        evaluation_id = _evaluation_id(record)
        if evaluation_id:
            payload["evaluation_id"] = evaluation_id
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(_extras(record))
        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    """``2026-03-02 09:00:00 [INFO] modeos.modes.scheduler: [eval-1a2b3c4d] message``"""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%Y-%m-%d %H:%M:%S")
        evaluation_id = _evaluation_id(record)
        prefix = f"[{evaluation_id[:13]}] " if evaluation_id else ""
        line = f"{stamp} [{record.levelname}] {record.name}: {prefix}{record.getMessage()}"
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(level: str = "INFO", json_format: bool | None = None) -> None:
    """
    Replace the root handlers with a single stderr handler.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL.
        json_format: Force JSON (True) or human (False) output. None picks
            human output for a terminal and JSON otherwise.
    """
    if json_format is None:
        json_format = not sys.stderr.isatty()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if json_format else HumanFormatter())
    handler.addFilter(EvaluationIdFilter())

    root = logging.getLogger()
    root.setLevel(level.upper())
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
