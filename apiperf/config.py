"""YAML configuration loaders: settings, suites and schedule snapshots.

Suite and schedule files may be YAML or JSON (JSON is valid YAML) and use the
camelCase keys of the persisted shapes or snake_case equivalents.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ApiPerfConfigError
from .logging_config import get_logger
from .models import Schedule, Suite

logger = get_logger("config")


@dataclass(slots=True)
class Settings:
    """Runtime settings. Every field has a default so the file is optional."""

    coordinator_port: int = 8765
    expected_workers: int = 1
    history_limit: int = 5
    heartbeat_interval_seconds: float = 10.0
    request_timeout_seconds: float = 30.0
    http2: bool = True


def _read_yaml(path: str | Path, what: str) -> Any:
    p = Path(path)
    if not p.exists():
        raise ApiPerfConfigError(f"{what} file not found: {path}", context={"path": str(path)})
    try:
        return yaml.safe_load(p.read_text(encoding="utf-8"))
    except yaml.YAMLError as e:
        logger.exception("Failed to parse %s file", what.lower())
        raise ApiPerfConfigError(
            f"Invalid YAML syntax in {what.lower()} file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    except OSError as e:
        logger.exception("Failed to read %s file", what.lower())
        raise ApiPerfConfigError(
            f"Cannot read {what.lower()} file: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e


def validate_settings(s: Settings) -> None:
    """Validate Settings bounds. Raises ApiPerfConfigError if invalid."""
    if not 0 <= s.coordinator_port <= 65535:
        raise ApiPerfConfigError("coordinator_port must be between 0 and 65535")
    if s.expected_workers < 1:
        raise ApiPerfConfigError("expected_workers must be >= 1")
    if s.history_limit < 1:
        raise ApiPerfConfigError("history_limit must be >= 1")
    if s.heartbeat_interval_seconds <= 0:
        raise ApiPerfConfigError("heartbeat_interval_seconds must be > 0")
    if s.request_timeout_seconds <= 0:
        raise ApiPerfConfigError("request_timeout_seconds must be > 0")


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from YAML; defaults when path is None."""
    if path is None:
        return Settings()
    raw = _read_yaml(path, "Settings") or {}
    if not isinstance(raw, dict):
        raise ApiPerfConfigError(
            "Settings must be a YAML object/dictionary",
            context={"path": str(path), "actual_type": type(raw).__name__},
        )
    defaults = Settings()
    try:
        settings = Settings(
            coordinator_port=int(raw.get("coordinator_port", defaults.coordinator_port)),
            expected_workers=int(raw.get("expected_workers", defaults.expected_workers)),
            history_limit=int(raw.get("history_limit", defaults.history_limit)),
            heartbeat_interval_seconds=float(raw.get("heartbeat_interval_seconds", defaults.heartbeat_interval_seconds)),
            request_timeout_seconds=float(raw.get("request_timeout_seconds", defaults.request_timeout_seconds)),
            http2=bool(raw.get("http2", defaults.http2)),
        )
    except (TypeError, ValueError) as e:
        raise ApiPerfConfigError(
            f"Invalid settings value: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    validate_settings(settings)
    return settings


def validate_suite(suite: Suite) -> None:
    """Validate Suite bounds. Raises ApiPerfConfigError if invalid."""
    if suite.iterations < 0:
        raise ApiPerfConfigError("iterations must be >= 0", context={"suite": suite.id})
    if suite.warmup_runs < 0:
        raise ApiPerfConfigError("warmupRuns must be >= 0", context={"suite": suite.id})
    if suite.concurrency < 1:
        raise ApiPerfConfigError("concurrency must be >= 1", context={"suite": suite.id})
    if suite.delay_between_requests < 0:
        raise ApiPerfConfigError("delayBetweenRequests must be >= 0", context={"suite": suite.id})
    orders = [r.order for r in suite.requests]
    if len(orders) != len(set(orders)):
        raise ApiPerfConfigError("request order must be unique within a suite", context={"suite": suite.id})
    for r in suite.requests:
        if r.sla_threshold is not None and r.sla_threshold <= 0:
            raise ApiPerfConfigError("slaThreshold must be > 0 when set", context={"request": r.id})


def load_suite(path: str | Path) -> Suite:
    """Load a suite definition from YAML or JSON.

    Args:
        path: Path to the suite file

    Returns:
        Validated Suite instance

    Raises:
        ApiPerfConfigError: If file not found, invalid syntax, or validation fails
    """
    raw = _read_yaml(path, "Suite")
    if not isinstance(raw, dict):
        raise ApiPerfConfigError(
            "Suite must be a YAML object/dictionary",
            context={"path": str(path), "actual_type": type(raw).__name__},
        )
    raw.setdefault("id", Path(path).stem)
    try:
        suite = Suite.from_dict(raw)
    except (KeyError, TypeError, ValueError) as e:
        raise ApiPerfConfigError(
            f"Invalid suite definition: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
    validate_suite(suite)
    logger.debug(
        "Loaded suite %s: requests=%d, iterations=%d, concurrency=%d",
        suite.name, len(suite.requests), suite.iterations, suite.concurrency,
    )
    return suite


def load_schedule_snapshot(path: str | Path) -> list[Schedule]:
    """Load a list of persisted schedules (e.g. for ScheduleRegistry.load_schedules)."""
    raw = _read_yaml(path, "Schedule") or []
    if not isinstance(raw, list):
        raise ApiPerfConfigError(
            "Schedule snapshot must be a YAML list",
            context={"path": str(path), "actual_type": type(raw).__name__},
        )
    try:
        return [Schedule.from_dict(item) for item in raw]
    except (KeyError, TypeError, ValueError) as e:
        raise ApiPerfConfigError(
            f"Invalid schedule entry: {e}",
            context={"path": str(path)},
            original_error=e,
        ) from e
