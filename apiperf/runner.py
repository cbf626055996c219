"""Execution runners behind the CLI: local run, distributed coordinator, cron loop.

Each runner wires the stores, engine and executor together, shows progress with
Rich when live, and returns the finished Run(s).
"""

from __future__ import annotations

import asyncio
import contextlib
import signal
import sys
from pathlib import Path

import orjson
from rich.console import Console
from rich.live import Live

from .config import Settings
from .coordinator import WorkCoordinator, build_work, wait_for_workers
from .dashboard import RunProgress, build_summary_table, build_workers_table, create_live_panel
from .engine import ExecutionEngine
from .events import ScheduledRunComplete, ScheduledRunError, WorkerResult
from .exceptions import ApiPerfError, CoordinatorError
from .executor import HttpxRequestExecutor, RequestExecutor
from .extraction import ElementTreeXPathEvaluator, ExtractionStep
from .history import HistoryStore
from .logging_config import get_logger
from .models import Result, Run, RunStatus, Suite, now_ms
from .scheduler import ScheduleRegistry
from .stats import calculate_stats
from .suites import SuiteStore

logger = get_logger("runner")

LIVE_REFRESH_PER_SEC = 4
LIVE_POLL_SEC = 0.25


def _stdout_is_tty() -> bool:
    """True if stdout is a TTY (interactive terminal). False in Docker without -it, CI, pipes."""
    return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()


def _install_abort_handler(engine: ExecutionEngine) -> bool:
    """Route SIGINT/SIGTERM to a cooperative engine abort. Returns False where unsupported."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, engine.abort)
        if hasattr(signal, "SIGTERM"):
            loop.add_signal_handler(signal.SIGTERM, engine.abort)
    except (NotImplementedError, RuntimeError):
        return False
    return True


def _remove_abort_handler() -> None:
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError, RuntimeError):
        loop.remove_signal_handler(signal.SIGINT)
        if hasattr(signal, "SIGTERM"):
            loop.remove_signal_handler(signal.SIGTERM)


def write_run_json(path: str | Path, run: Run) -> Path:
    """Write the run in its persisted JSON shape."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_bytes(orjson.dumps(run.to_dict(), option=orjson.OPT_INDENT_2))
    return p


def build_engine(
    executor: RequestExecutor,
    settings: Settings,
    suites: list[Suite] | None = None,
) -> ExecutionEngine:
    """Stores, extraction and engine wired together."""
    history = HistoryStore(limit=settings.history_limit)
    store = SuiteStore(history=history)
    store.set_suites(suites or [])
    extraction = ExtractionStep(ElementTreeXPathEvaluator())
    return ExecutionEngine(store, history, executor, extraction=extraction)


async def _run_with_progress(
    engine: ExecutionEngine,
    suite: Suite,
    live: bool,
    console: Console,
    environment: str | None,
    variables: dict[str, str] | None,
) -> Run | None:
    progress = RunProgress(suite.name, suite.iterations + suite.warmup_runs)
    disconnect = [
        engine.events.run_started.connect(progress.on_run_started),
        engine.events.iteration_complete.connect(progress.on_iteration_complete),
    ]
    try:
        run_task = asyncio.create_task(engine.run_suite(suite.id, environment, variables))
        if live and _stdout_is_tty():
            with Live(create_live_panel(progress), console=console, refresh_per_second=LIVE_REFRESH_PER_SEC) as lv:
                while not run_task.done():
                    lv.update(create_live_panel(progress))
                    await asyncio.sleep(LIVE_POLL_SEC)
                lv.update(create_live_panel(progress))
        return await run_task
    finally:
        for d in disconnect:
            d()


async def run_local(
    suite: Suite,
    settings: Settings,
    variables: dict[str, str] | None = None,
    environment: str | None = None,
    live: bool = True,
    json_path: str | Path | None = None,
    executor: RequestExecutor | None = None,
) -> Run:
    """Run a suite in this process and print its summary."""
    console = Console()
    async with contextlib.AsyncExitStack() as stack:
        if executor is None:
            executor = await stack.enter_async_context(
                HttpxRequestExecutor(http2=settings.http2, timeout=settings.request_timeout_seconds)
            )
        engine = build_engine(executor, settings, [suite])
        handled = _install_abort_handler(engine)
        try:
            run = await _run_with_progress(engine, suite, live, console, environment, variables)
        finally:
            if handled:
                _remove_abort_handler()

    if run is None:
        raise ApiPerfError("Suite run did not start", context={"suite": suite.id})
    if live:
        console.print(build_summary_table(run))
    if json_path:
        write_run_json(json_path, run)
        if live:
            console.print(f"[dim]JSON run:[/dim] {json_path}")
    return run


async def run_distributed(
    suite: Suite,
    settings: Settings,
    expected_workers: int,
    timeout: float,
    live: bool = True,
    json_path: str | Path | None = None,
    host: str = "0.0.0.0",
    variables: dict[str, str] | None = None,
) -> Run:
    """Serve as coordinator: wait for workers, distribute the suite, collect results.

    ``variables`` are shipped with the work so every worker starts from the same values.

    Raises:
        CoordinatorError: If the server cannot bind or too few workers connect in time
    """
    console = Console()
    coordinator = WorkCoordinator()
    results: list[Result] = []
    expected_results = suite.iterations * len(suite.requests)
    all_received = asyncio.Event()
    errors: list[BaseException] = []

    def on_result(event: WorkerResult) -> None:
        if not isinstance(event.result, dict):
            logger.warning("Dropping malformed result from %r", event.worker_id)
            return
        results.append(Result.from_dict(event.result))
        if len(results) >= expected_results:
            all_received.set()

    coordinator.events.result.connect(on_result)
    coordinator.events.error.connect(errors.append)
    if live:
        coordinator.events.worker_registered.connect(
            lambda w: console.print(f"[green]Worker {w.id!r} connected[/green] ({len(coordinator.registry)}/{expected_workers})")
        )

    await coordinator.start(settings.coordinator_port, expected_workers, host=host)
    if not coordinator.is_running():
        raise CoordinatorError(
            "Failed to start coordinator",
            context={"port": settings.coordinator_port},
            original_error=errors[0] if errors and isinstance(errors[0], Exception) else None,
        )

    start_time = now_ms()
    complete = False
    try:
        if not await wait_for_workers(coordinator, timeout):
            raise CoordinatorError(
                f"Timeout: only {len(coordinator.registry)}/{expected_workers} workers connected",
                context={"timeout": timeout},
            )
        start_time = now_ms()
        await coordinator.distribute_work(build_work(suite, variables))
        if live:
            console.print(build_workers_table(coordinator.get_status()))
        if expected_results == 0:
            complete = True
        else:
            try:
                await asyncio.wait_for(all_received.wait(), timeout=timeout)
                complete = True
            except asyncio.TimeoutError:
                logger.warning("Timed out with %d/%d results", len(results), expected_results)
    finally:
        await coordinator.stop()

    run = Run(
        id=f"run-{now_ms()}",
        suite_id=suite.id,
        suite_name=suite.name,
        start_time=start_time,
        end_time=now_ms(),
        status=RunStatus.COMPLETED if complete else RunStatus.ABORTED,
        results=results,
        summary=calculate_stats(results),
    )
    if live:
        console.print(build_summary_table(run))
    if json_path:
        write_run_json(json_path, run)
    return run


class _SeededRunner:
    """Starts every scheduled run with the same environment label and seed variables."""

    def __init__(self, engine: ExecutionEngine, environment: str | None, variables: dict[str, str] | None) -> None:
        self._engine = engine
        self._environment = environment
        self._variables = variables

    async def run_suite(self, suite_id: str) -> Run | None:
        return await self._engine.run_suite(suite_id, self._environment, self._variables)


async def run_on_schedule(
    suite: Suite,
    cron_expression: str,
    settings: Settings,
    max_runs: int | None = None,
    live: bool = True,
    executor: RequestExecutor | None = None,
    variables: dict[str, str] | None = None,
    environment: str | None = None,
) -> list[Run]:
    """Run the suite on a cron schedule until interrupted or ``max_runs`` runs finished."""
    console = Console()
    runs: list[Run] = []
    finished = asyncio.Event()

    def on_complete(event: ScheduledRunComplete) -> None:
        runs.append(event.run)
        if live:
            console.print(build_summary_table(event.run))
        if max_runs is not None and len(runs) >= max_runs:
            finished.set()

    def on_error(event: ScheduledRunError) -> None:
        console.print(f"[red]Scheduled run failed:[/red] {event.error}")

    async with contextlib.AsyncExitStack() as stack:
        if executor is None:
            executor = await stack.enter_async_context(
                HttpxRequestExecutor(http2=settings.http2, timeout=settings.request_timeout_seconds)
            )
        engine = build_engine(executor, settings, [suite])
        registry = ScheduleRegistry(_SeededRunner(engine, environment, variables))
        registry.events.scheduled_run_complete.connect(on_complete)
        registry.events.scheduled_run_error.connect(on_error)
        try:
            schedule = registry.add_schedule(suite.id, suite.name, cron_expression)
            if live:
                console.print(f"[cyan]Scheduled[/cyan] {suite.name} with '{cron_expression}'")
            logger.info("Next run at %s", schedule.next_run)
            await finished.wait()
        finally:
            registry.dispose()
    return runs
