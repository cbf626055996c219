"""Unit tests for models (dict shapes, defaults, ordering)."""

from __future__ import annotations

from apiperf.models import (
    IterationRange,
    PerfRequest,
    Run,
    RunStatus,
    Schedule,
    Suite,
    Worker,
    WorkerStatus,
)


def test_suite_from_dict_accepts_camel_case() -> None:
    suite = Suite.from_dict(
        {
            "id": "s1",
            "name": "Quotes",
            "iterations": 4,
            "warmupRuns": 2,
            "concurrency": 3,
            "delayBetweenRequests": 15,
            "createdAt": 1000,
            "modifiedAt": 2000,
            "requests": [
                {"id": "r1", "name": "Get", "endpoint": "http://x", "requestBody": "<a/>", "order": 0,
                 "slaThreshold": 100, "extractors": [{"variable": "v", "path": "//V"}]},
            ],
        }
    )
    assert suite.warmup_runs == 2
    assert suite.delay_between_requests == 15.0
    assert suite.created_at == 1000
    assert suite.requests[0].sla_threshold == 100.0
    assert suite.requests[0].extractors[0].type == "XPath"


def test_suite_from_dict_accepts_snake_case_and_defaults() -> None:
    suite = Suite.from_dict({"id": "s2", "warmup_runs": 1, "delay_between_requests": 5})
    assert suite.name == "s2"
    assert suite.iterations == 1
    assert suite.concurrency == 1
    assert suite.warmup_runs == 1
    assert suite.delay_between_requests == 5.0
    assert suite.requests == []


def test_sorted_requests_by_order() -> None:
    suite = Suite(
        id="s",
        name="s",
        requests=[
            PerfRequest(id="b", name="b", endpoint="", order=1),
            PerfRequest(id="a", name="a", endpoint="", order=0),
        ],
    )
    assert [r.id for r in suite.sorted_requests()] == ["a", "b"]


def test_request_to_dict_omits_unset_optionals() -> None:
    d = PerfRequest(id="r", name="R", endpoint="http://x").to_dict()
    assert "slaThreshold" not in d
    assert "soapAction" not in d
    assert d["method"] == "POST"


def test_run_to_dict_uses_status_value() -> None:
    run = Run(id="run-1", suite_id="s", suite_name="S", start_time=1, end_time=2, status=RunStatus.ABORTED)
    d = run.to_dict()
    assert d["status"] == "aborted"
    assert d["summary"]["totalRequests"] == 0
    assert "error" not in d
    back = Run.from_dict(d)
    assert back.status is RunStatus.ABORTED
    assert back.summary.total_requests == 0


def test_schedule_from_dict_parses_status() -> None:
    s = Schedule.from_dict(
        {"id": "sch", "suiteId": "s", "suiteName": "S", "cronExpression": "0 * * * *",
         "enabled": False, "lastRunStatus": "failed", "lastRun": 10}
    )
    assert s.enabled is False
    assert s.last_run_status is RunStatus.FAILED
    assert s.last_run == 10
    assert s.next_run is None


def test_iteration_range_count_inclusive() -> None:
    assert IterationRange(0, 3).count == 4
    assert IterationRange(7, 9).count == 3
    assert IterationRange(0, -1).count == 0


def test_worker_to_dict() -> None:
    w = Worker(id="w1", status=WorkerStatus.WORKING, platform="linux", assigned_iterations=IterationRange(0, 4))
    d = w.to_dict()
    assert d["status"] == "working"
    assert d["assignedIterations"] == {"start": 0, "end": 4}
    assert "lastHeartbeat" not in d
