"""Integration tests for runner (local, distributed, scheduled) with fake executors."""

from __future__ import annotations

import asyncio
import socket
from pathlib import Path

import orjson
import pytest

from conftest import FakeExecutor, make_request, make_suite

from apiperf.config import Settings
from apiperf.exceptions import CoordinatorError
from apiperf.models import RunStatus
from apiperf.runner import run_distributed, run_local, run_on_schedule, write_run_json
from apiperf.worker import run_worker

HOST = "127.0.0.1"


def _free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind((HOST, 0))
        return s.getsockname()[1]


def test_run_local_returns_run_and_writes_json(tmp_path: Path) -> None:
    suite = make_suite(iterations=2, warmup_runs=1)
    executor = FakeExecutor()
    out = tmp_path / "reports" / "run.json"
    run = asyncio.run(
        run_local(suite, Settings(), environment="ci", live=False, json_path=out, executor=executor)
    )
    assert run.status == RunStatus.COMPLETED
    assert run.summary.total_requests == 4
    assert len(executor.calls) == 6
    data = orjson.loads(out.read_bytes())
    assert data["suiteId"] == suite.id
    assert data["environment"] == "ci"
    assert len(data["results"]) == 4


def test_run_local_passes_variables() -> None:
    suite = make_suite(requests=[make_request("A", 0, body="${user}")])
    executor = FakeExecutor()
    asyncio.run(run_local(suite, Settings(), variables={"user": "bob"}, live=False, executor=executor))
    assert executor.bodies_for("A") == ["bob"]


def test_write_run_json_creates_parent(tmp_path: Path) -> None:
    suite = make_suite()
    run = asyncio.run(run_local(suite, Settings(), live=False, executor=FakeExecutor()))
    p = write_run_json(tmp_path / "a" / "b" / "run.json", run)
    assert p.exists()
    assert orjson.loads(p.read_bytes())["status"] == "completed"


def test_run_distributed_times_out_without_workers() -> None:
    settings = Settings(coordinator_port=0)
    with pytest.raises(CoordinatorError, match="Timeout"):
        asyncio.run(run_distributed(make_suite(), settings, expected_workers=1, timeout=0.1, live=False, host=HOST))


def test_run_distributed_bind_failure() -> None:
    blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    blocker.bind((HOST, 0))
    blocker.listen()
    try:
        settings = Settings(coordinator_port=blocker.getsockname()[1])
        with pytest.raises(CoordinatorError, match="Failed to start coordinator"):
            asyncio.run(run_distributed(make_suite(), settings, expected_workers=1, timeout=0.1, live=False, host=HOST))
    finally:
        blocker.close()


def test_run_distributed_collects_worker_results(tmp_path: Path) -> None:
    port = _free_port()
    settings = Settings(coordinator_port=port)
    suite = make_suite(iterations=3)
    out = tmp_path / "distributed.json"

    async def _worker_with_retry():
        loop = asyncio.get_running_loop()
        deadline = loop.time() + 3.0
        while True:
            try:
                return await run_worker(f"ws://{HOST}:{port}", "w1", FakeExecutor())
            except OSError:
                if loop.time() > deadline:
                    raise
                await asyncio.sleep(0.05)

    async def _run():
        worker = asyncio.create_task(_worker_with_retry())
        run = await run_distributed(suite, settings, expected_workers=1, timeout=3.0, live=False, json_path=out, host=HOST)
        sent = await worker
        return run, sent

    run, _sent = asyncio.run(_run())
    assert run.status == RunStatus.COMPLETED
    assert run.summary.total_requests == 6
    assert orjson.loads(out.read_bytes())["summary"]["totalRequests"] == 6


def test_run_distributed_ships_variables_to_workers() -> None:
    port = _free_port()
    settings = Settings(coordinator_port=port)
    suite = make_suite(requests=[make_request("A", 0, body="user=${user}")], iterations=2)
    executor = FakeExecutor()

    async def _worker_with_retry():
        loop = asyncio.get_running_loop()
        deadline = loop.time() + 3.0
        while True:
            try:
                return await run_worker(f"ws://{HOST}:{port}", "w1", executor)
            except OSError:
                if loop.time() > deadline:
                    raise
                await asyncio.sleep(0.05)

    async def _run():
        worker = asyncio.create_task(_worker_with_retry())
        run = await run_distributed(
            suite, settings, expected_workers=1, timeout=3.0, live=False, host=HOST, variables={"user": "carol"},
        )
        await worker
        return run

    run = asyncio.run(_run())
    assert run.summary.total_requests == 2
    assert executor.bodies_for("A") == ["user=carol", "user=carol"]


def test_run_on_schedule_stops_after_max_runs() -> None:
    suite = make_suite()
    runs = asyncio.run(
        asyncio.wait_for(
            run_on_schedule(suite, "* * * * * *", Settings(), max_runs=1, live=False, executor=FakeExecutor()),
            timeout=5.0,
        )
    )
    assert len(runs) == 1
    assert runs[0].suite_id == suite.id


def test_run_on_schedule_passes_variables_and_environment() -> None:
    suite = make_suite(requests=[make_request("A", 0, body="user=${user}")])
    executor = FakeExecutor()
    runs = asyncio.run(
        asyncio.wait_for(
            run_on_schedule(
                suite,
                "* * * * * *",
                Settings(),
                max_runs=1,
                live=False,
                executor=executor,
                variables={"user": "dave"},
                environment="nightly",
            ),
            timeout=5.0,
        )
    )
    assert executor.bodies_for("A") == ["user=dave"]
    assert runs[0].environment == "nightly"
