"""Suite execution engine.

This module provides the core run logic:
- RunLock: process-wide single-run guard (Idle / Running(run_id))
- execute_request: single request execution with timing, never raises
- ExecutionEngine: iteration/warmup control, sequential vs. chunked concurrent
  dispatch, variable propagation, cooperative abort, stats and history hand-off

Timing uses perf_counter_ns for durations and wall-clock ms for timestamps.
"""

from __future__ import annotations

import asyncio
import threading
import time
import uuid
from typing import TYPE_CHECKING

from .events import IterationComplete, RunStarted, Signal, SignalGroup
from .extraction import ExtractionStep, substitute_variables
from .logging_config import bind_context, get_logger
from .models import PerfRequest, Result, Run, RunStatus, Suite, now_ms
from .stats import calculate_stats

if TYPE_CHECKING:
    from .executor import RequestExecutor
    from .history import HistoryStore
    from .suites import SuiteStore

logger = get_logger("engine")

# Nanoseconds to milliseconds conversion
NS_TO_MS = 1_000_000


class RunLock:
    """Owned run state. Only ``try_begin_run`` and ``end_run`` change it."""

    __slots__ = ("_mutex", "_run_id")

    def __init__(self) -> None:
        self._mutex = threading.Lock()
        self._run_id: str | None = None

    def try_begin_run(self, run_id: str) -> bool:
        """Move Idle -> Running(run_id). Returns False if a run already holds the lock."""
        with self._mutex:
            if self._run_id is not None:
                return False
            self._run_id = run_id
            return True

    def end_run(self) -> None:
        with self._mutex:
            self._run_id = None

    @property
    def run_id(self) -> str | None:
        return self._run_id

    @property
    def is_running(self) -> bool:
        return self._run_id is not None


async def execute_request(
    executor: RequestExecutor,
    req: PerfRequest,
    iteration: int,
    variables: dict[str, str],
    extraction: ExtractionStep | None = None,
) -> Result:
    """Execute one request and return its Result.

    Args:
        executor: Capability that sends the request
        req: Request with body template, headers, extractors, SLA
        iteration: Iteration index recorded on the result
        variables: Values substituted into ``${name}`` placeholders (not mutated)
        extraction: Extraction step; extractors are skipped when None

    Note:
        This never raises - executor errors are captured in the Result.
    """
    status = 0
    success = False
    error: str | None = None
    extracted: dict[str, str] = {}

    start_ns = time.perf_counter_ns()
    try:
        body = substitute_variables(req.request_body, variables)
        response = await executor.execute(req.endpoint, req.name, body, req.headers, method=req.method)
        success = response.success
        if response.status_code is not None:
            status = response.status_code
        else:
            status = 200 if success else 500
        if not success:
            error = response.error or f"Request failed with status {status}"
        if extraction is not None and req.extractors:
            extracted = extraction.apply(response.raw_response or "", req.extractors)
    except Exception as e:  # noqa: BLE001
        success = False
        error = str(e) or type(e).__name__
    duration = (time.perf_counter_ns() - start_ns) / NS_TO_MS

    return Result(
        request_id=req.id,
        request_name=req.name,
        iteration=iteration,
        duration=duration,
        status=status,
        success=success,
        sla_breached=bool(req.sla_threshold) and duration > req.sla_threshold,
        error=error,
        extracted_values=extracted or None,
        timestamp=time.time() * 1000,
    )


class EngineEvents(SignalGroup):
    def __init__(self) -> None:
        self.run_started: Signal[RunStarted] = Signal("run_started")
        self.iteration_complete: Signal[IterationComplete] = Signal("iteration_complete")
        self.run_completed: Signal[Run] = Signal("run_completed")


def _new_run_id() -> str:
    return f"run-{now_ms()}-{uuid.uuid4().hex[:6]}"


class ExecutionEngine:
    """Runs one suite at a time, process-wide.

    Concurrent callers of ``run_suite`` get None while a run is in flight; there
    is no queue.
    """

    def __init__(
        self,
        suites: SuiteStore,
        history: HistoryStore,
        executor: RequestExecutor,
        extraction: ExtractionStep | None = None,
        run_lock: RunLock | None = None,
    ) -> None:
        self._suites = suites
        self._history = history
        self._executor = executor
        self._extraction = extraction
        self._lock = run_lock or RunLock()
        self._abort_requested = False
        self.events = EngineEvents()

    def is_executing(self) -> bool:
        return self._lock.is_running

    @property
    def current_run_id(self) -> str | None:
        return self._lock.run_id

    def abort(self) -> None:
        """Request the current run to stop at the next request/chunk/iteration boundary."""
        self._abort_requested = True
        logger.info("Abort requested")

    async def run_suite(
        self,
        suite_id: str,
        environment: str | None = None,
        variables: dict[str, str] | None = None,
    ) -> Run | None:
        """Run a suite to completion (or abort) and store it in history.

        Returns None when the suite does not exist or another run is in progress.
        """
        suite = self._suites.get_suite(suite_id)
        if suite is None:
            logger.warning("Suite not found: %s", suite_id)
            return None

        run_id = _new_run_id()
        if not self._lock.try_begin_run(run_id):
            logger.warning("Another run is already in progress (%s)", self._lock.run_id)
            return None

        try:
            run = await self._run(run_id, suite, environment, variables)
            self._history.add(run)
        finally:
            self._lock.end_run()

        self.events.run_completed.emit(run)
        bind_context(logger, run_id=run.id, suite_id=suite.id).info(
            "Run completed: %s results, avg %.0fms, status=%s",
            len(run.results), run.summary.avg_response_time, run.status.value,
        )
        return run

    async def _run(
        self,
        run_id: str,
        suite: Suite,
        environment: str | None,
        variables: dict[str, str] | None,
    ) -> Run:
        self._abort_requested = False
        start_time = now_ms()
        results: list[Result] = []
        shared_vars: dict[str, str] = dict(variables or {})
        run_error: str | None = None
        log = bind_context(logger, run_id=run_id, suite_id=suite.id)

        log.info("Starting performance run: %s", suite.name)
        self.events.run_started.emit(RunStarted(run_id=run_id, suite_id=suite.id, suite_name=suite.name))

        requests = suite.sorted_requests()
        total_iterations = suite.iterations + suite.warmup_runs
        try:
            for iteration in range(total_iterations):
                if self._abort_requested:
                    log.info("Run aborted by user")
                    break

                is_warmup = iteration < suite.warmup_runs
                log.debug(
                    "Iteration %d/%d%s", iteration + 1, total_iterations, " (warmup)" if is_warmup else "",
                )

                if suite.concurrency <= 1:
                    await self._execute_sequential(suite, requests, iteration, is_warmup, shared_vars, results)
                else:
                    await self._execute_concurrent(suite, requests, iteration, is_warmup, shared_vars, results)

                self.events.iteration_complete.emit(IterationComplete(iteration=iteration, total=total_iterations))
        except Exception as e:
            # Reported as completed with the partial results; see Run.error
            log.exception("Run failed: %s", e)
            run_error = str(e) or type(e).__name__

        return Run(
            id=run_id,
            suite_id=suite.id,
            suite_name=suite.name,
            start_time=start_time,
            end_time=now_ms(),
            status=RunStatus.ABORTED if self._abort_requested else RunStatus.COMPLETED,
            results=results,
            summary=calculate_stats(results),
            environment=environment,
            error=run_error,
        )

    async def _execute_sequential(
        self,
        suite: Suite,
        requests: list[PerfRequest],
        iteration: int,
        is_warmup: bool,
        variables: dict[str, str],
        results: list[Result],
    ) -> None:
        for req in requests:
            if self._abort_requested:
                break

            result = await execute_request(self._executor, req, iteration, variables, self._extraction)
            if not is_warmup:
                results.append(result)

            # Last writer wins
            if result.extracted_values:
                variables.update(result.extracted_values)

            await self._delay(suite.delay_between_requests)

    async def _execute_concurrent(
        self,
        suite: Suite,
        requests: list[PerfRequest],
        iteration: int,
        is_warmup: bool,
        variables: dict[str, str],
        results: list[Result],
    ) -> None:
        concurrency = suite.concurrency
        for i in range(0, len(requests), concurrency):
            if self._abort_requested:
                break

            chunk = requests[i:i + concurrency]
            snapshot = dict(variables)
            chunk_results = await asyncio.gather(
                *(execute_request(self._executor, req, iteration, snapshot, self._extraction) for req in chunk)
            )

            if not is_warmup:
                results.extend(chunk_results)

            # Insert-if-absent after the join: first writer in chunk order wins,
            # values already in the map are never overwritten.
            for result in chunk_results:
                if result.extracted_values:
                    for key, value in result.extracted_values.items():
                        if key not in variables:
                            variables[key] = value

            await self._delay(suite.delay_between_requests)

    @staticmethod
    async def _delay(ms: float) -> None:
        if ms > 0:
            await asyncio.sleep(ms / 1000.0)
