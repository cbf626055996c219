"""Unit tests for config loaders and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from apiperf.config import Settings, load_schedule_snapshot, load_settings, load_suite
from apiperf.exceptions import ApiPerfConfigError
from apiperf.models import RunStatus


def test_load_suite_file_not_found() -> None:
    with pytest.raises(ApiPerfConfigError, match="Suite file not found"):
        load_suite("/nonexistent/suite.yaml")


def test_load_suite_valid(suite_yaml_path: Path) -> None:
    suite = load_suite(suite_yaml_path)
    assert suite.id == "checkout"
    assert suite.name == "Checkout flow"
    assert suite.iterations == 3
    assert suite.warmup_runs == 1
    assert [r.name for r in suite.sorted_requests()] == ["Login", "Cart"]
    assert suite.requests[0].extractors[0].variable == "token"
    assert suite.requests[1].sla_threshold == 250.0


def test_load_suite_id_defaults_to_file_stem(tmp_path: Path) -> None:
    p = tmp_path / "smoke.yaml"
    p.write_text("name: Smoke\nrequests: []\n")
    assert load_suite(p).id == "smoke"


def test_load_suite_accepts_json(tmp_path: Path) -> None:
    p = tmp_path / "s.json"
    p.write_text('{"id": "j", "name": "J", "iterations": 2, "requests": []}')
    assert load_suite(p).iterations == 2


def test_load_suite_invalid_yaml(tmp_path: Path) -> None:
    bad = tmp_path / "bad.yaml"
    bad.write_text("not: valid: yaml: [")
    with pytest.raises(ApiPerfConfigError, match="Invalid YAML syntax"):
        load_suite(bad)


def test_load_suite_not_a_mapping(tmp_path: Path) -> None:
    bad = tmp_path / "list.yaml"
    bad.write_text("- 1\n- 2\n")
    with pytest.raises(ApiPerfConfigError, match="Suite must be a YAML object"):
        load_suite(bad)


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("iterations: -1", "iterations must be >= 0"),
        ("warmupRuns: -2", "warmupRuns must be >= 0"),
        ("concurrency: 0", "concurrency must be >= 1"),
        ("delayBetweenRequests: -5", "delayBetweenRequests must be >= 0"),
    ],
)
def test_load_suite_bounds(tmp_path: Path, body: str, message: str) -> None:
    bad = tmp_path / "bounds.yaml"
    bad.write_text(f"name: B\n{body}\n")
    with pytest.raises(ApiPerfConfigError, match=message):
        load_suite(bad)


def test_load_suite_duplicate_order(tmp_path: Path) -> None:
    bad = tmp_path / "dup.yaml"
    bad.write_text(
        "name: Dup\nrequests:\n"
        "  - {id: a, endpoint: 'http://x', order: 0}\n"
        "  - {id: b, endpoint: 'http://x', order: 0}\n"
    )
    with pytest.raises(ApiPerfConfigError, match="request order must be unique"):
        load_suite(bad)


def test_load_suite_bad_sla(tmp_path: Path) -> None:
    bad = tmp_path / "sla.yaml"
    bad.write_text("name: S\nrequests:\n  - {id: a, endpoint: 'http://x', slaThreshold: 0}\n")
    with pytest.raises(ApiPerfConfigError, match="slaThreshold must be > 0"):
        load_suite(bad)


def test_load_suite_missing_request_id(tmp_path: Path) -> None:
    bad = tmp_path / "noid.yaml"
    bad.write_text("name: S\nrequests:\n  - {endpoint: 'http://x'}\n")
    with pytest.raises(ApiPerfConfigError, match="Invalid suite definition"):
        load_suite(bad)


def test_load_settings_defaults() -> None:
    assert load_settings(None) == Settings()


def test_load_settings_file(tmp_path: Path) -> None:
    p = tmp_path / "settings.yaml"
    p.write_text("coordinator_port: 9000\nexpected_workers: 3\nhttp2: false\n")
    s = load_settings(p)
    assert s.coordinator_port == 9000
    assert s.expected_workers == 3
    assert s.http2 is False
    assert s.history_limit == 5


def test_load_settings_empty_file_gives_defaults(tmp_path: Path) -> None:
    p = tmp_path / "empty.yaml"
    p.write_text("")
    assert load_settings(p) == Settings()


@pytest.mark.parametrize(
    ("body", "message"),
    [
        ("coordinator_port: 70000", "coordinator_port must be between"),
        ("expected_workers: 0", "expected_workers must be >= 1"),
        ("history_limit: 0", "history_limit must be >= 1"),
        ("heartbeat_interval_seconds: 0", "heartbeat_interval_seconds must be > 0"),
        ("coordinator_port: abc", "Invalid settings value"),
    ],
)
def test_load_settings_validation(tmp_path: Path, body: str, message: str) -> None:
    p = tmp_path / "settings.yaml"
    p.write_text(body + "\n")
    with pytest.raises(ApiPerfConfigError, match=message):
        load_settings(p)


def test_load_schedule_snapshot(tmp_path: Path) -> None:
    p = tmp_path / "schedules.yaml"
    p.write_text(
        "- {id: a, suiteId: s1, suiteName: S1, cronExpression: '0 3 * * *'}\n"
        "- {id: b, suiteId: s2, suiteName: S2, cronExpression: '0 4 * * *', enabled: false, lastRunStatus: failed}\n"
    )
    schedules = load_schedule_snapshot(p)
    assert [s.id for s in schedules] == ["a", "b"]
    assert schedules[1].enabled is False
    assert schedules[1].last_run_status is RunStatus.FAILED


def test_load_schedule_snapshot_must_be_list(tmp_path: Path) -> None:
    p = tmp_path / "schedules.yaml"
    p.write_text("id: a\n")
    with pytest.raises(ApiPerfConfigError, match="must be a YAML list"):
        load_schedule_snapshot(p)
