"""Logging setup for apiperf.

Every module logs under the ``apiperf`` logger tree. Records may carry run
context (run id, suite id, worker id) through ``extra=`` or a logger returned by
``bind_context``; both formatters render it when present.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Any

import orjson

LOG_LEVEL_ENV = "APIPERF_LOG_LEVEL"
LOG_FORMAT_ENV = "APIPERF_LOG_FORMAT"  # "json" | "text" (default)

ROOT_LOGGER_NAME = "apiperf"

# record attribute -> JSON key (camelCase, same as the wire and run files)
LOG_CONTEXT_FIELDS = {
    "run_id": "runId",
    "suite_id": "suiteId",
    "worker_id": "workerId",
}

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"


def get_logger(name: str) -> logging.Logger:
    """Return a logger for the given module name. Configures root apiperf logger on first use."""
    logger = logging.getLogger(ROOT_LOGGER_NAME if name == ROOT_LOGGER_NAME else f"{ROOT_LOGGER_NAME}.{name}")
    if not logger.handlers and logger.level == logging.NOTSET:
        _configure_apiperf_logging()
    return logger


def bind_context(logger: logging.Logger, **context: str | None) -> logging.LoggerAdapter:
    """Logger that stamps every record with the given run context. None values are dropped."""
    unknown = set(context) - set(LOG_CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {', '.join(sorted(unknown))}")
    return logging.LoggerAdapter(logger, {k: v for k, v in context.items() if v is not None})


def record_context(record: logging.LogRecord) -> dict[str, str]:
    """Run context attached to a record, keyed by attribute name."""
    out: dict[str, str] = {}
    for attr in LOG_CONTEXT_FIELDS:
        value = getattr(record, attr, None)
        if value is not None:
            out[attr] = str(value)
    return out


def _configure_apiperf_logging() -> None:
    root = logging.getLogger(ROOT_LOGGER_NAME)
    if root.handlers:
        return
    level_name = (os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stderr)
    fmt_env = (os.environ.get(LOG_FORMAT_ENV) or "text").lower()
    if fmt_env == "json":
        handler.setFormatter(_JsonFormatter())
    else:
        handler.setFormatter(_TextFormatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT))
    root.addHandler(handler)


class _TextFormatter(logging.Formatter):
    """Plain text with run context appended as ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        suffix = " ".join(f"{k}={v}" for k, v in context.items())
        head, sep, tail = line.partition("\n")
        return f"{head} [{suffix}]{sep}{tail}"


class _JsonFormatter(logging.Formatter):
    """Single-line JSON records for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        obj: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt or "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for attr, value in record_context(record).items():
            obj[LOG_CONTEXT_FIELDS[attr]] = value
        if record.exc_info:
            obj["exception"] = self.formatException(record.exc_info)
        return orjson.dumps(obj).decode("utf-8")
