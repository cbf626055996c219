"""Unit tests for logging_config (get_logger, formatters, run context)."""

from __future__ import annotations

import logging
import os
import sys

import orjson
import pytest

from apiperf.logging_config import (
    LOG_LEVEL_ENV,
    TEXT_DATEFMT,
    TEXT_FORMAT,
    _JsonFormatter,
    _TextFormatter,
    bind_context,
    get_logger,
)


def test_get_logger_returns_logger() -> None:
    logger = get_logger("test")
    assert isinstance(logger, logging.Logger)
    assert logger.name == "apiperf.test"


def test_get_logger_root_name() -> None:
    logger = get_logger("apiperf")
    assert logger.name == "apiperf"


def test_get_logger_configures_root_handler() -> None:
    prev = os.environ.pop(LOG_LEVEL_ENV, None)
    try:
        os.environ[LOG_LEVEL_ENV] = "DEBUG"
        get_logger("test_level")
        root = logging.getLogger("apiperf")
        # Root may already be configured by an earlier import; one handler either way
        assert len(root.handlers) == 1
    finally:
        if prev is not None:
            os.environ[LOG_LEVEL_ENV] = prev
        else:
            os.environ.pop(LOG_LEVEL_ENV, None)


def test_json_formatter_single_line() -> None:
    record = logging.LogRecord("apiperf.engine", logging.WARNING, __file__, 1, "run %s slow", ("r1",), None)
    line = _JsonFormatter().format(record)
    assert "\n" not in line
    obj = orjson.loads(line)
    assert obj["level"] == "WARNING"
    assert obj["logger"] == "apiperf.engine"
    assert obj["message"] == "run r1 slow"


def test_json_formatter_includes_exception() -> None:
    try:
        raise ValueError("bad")
    except ValueError:
        exc_info = sys.exc_info()
    record = logging.LogRecord("apiperf.x", logging.ERROR, __file__, 1, "failed", (), exc_info)
    obj = orjson.loads(_JsonFormatter().format(record))
    assert "ValueError: bad" in obj["exception"]


def _record(**context) -> logging.LogRecord:
    record = logging.LogRecord("apiperf.engine", logging.INFO, __file__, 1, "Run completed", (), None)
    for k, v in context.items():
        setattr(record, k, v)
    return record


def test_json_formatter_adds_run_context() -> None:
    obj = orjson.loads(_JsonFormatter().format(_record(run_id="run-1", suite_id="checkout")))
    assert obj["runId"] == "run-1"
    assert obj["suiteId"] == "checkout"
    assert "workerId" not in obj


def test_text_formatter_appends_context() -> None:
    fmt = _TextFormatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT)
    assert fmt.format(_record(worker_id="w2")).endswith("apiperf.engine: Run completed [worker_id=w2]")
    assert fmt.format(_record()).endswith("apiperf.engine: Run completed")


def test_bind_context_stamps_records(caplog) -> None:
    log = bind_context(get_logger("bound"), run_id="run-7", worker_id=None)
    with caplog.at_level(logging.INFO, logger="apiperf"):
        log.info("hello")
    record = caplog.records[-1]
    assert record.run_id == "run-7"
    assert not hasattr(record, "worker_id")


def test_bind_context_rejects_unknown_field() -> None:
    with pytest.raises(ValueError, match="tenant"):
        bind_context(get_logger("bound"), tenant="acme")
