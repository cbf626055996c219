"""Data models for apiperf.

Entities mirror the persisted JSON shapes used by the host settings store:
``to_dict`` emits camelCase keys, ``from_dict`` accepts camelCase or snake_case.

- __slots__ on the per-request Result (the most allocated object during a run)
- dataclass(slots=True) for the remaining entities
- str Enums for statuses so they serialize as plain strings
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Wall-clock epoch milliseconds, the timestamp unit of every entity."""
    return int(time.time() * 1000)


def _pick(data: dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    if camel in data:
        return data[camel]
    return data.get(snake, default)


class RunStatus(str, Enum):
    """Lifecycle of a Run."""

    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"
    FAILED = "failed"  # only recorded on schedules; the engine never produces it


class WorkerStatus(str, Enum):
    """Connection/work state of a distributed worker."""

    CONNECTED = "connected"
    IDLE = "idle"
    WORKING = "working"
    DISCONNECTED = "disconnected"


@dataclass(slots=True)
class Extractor:
    """Pulls a named variable out of a response body for later requests."""

    variable: str
    path: str
    type: str = "XPath"

    def to_dict(self) -> dict[str, Any]:
        return {"variable": self.variable, "path": self.path, "type": self.type}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Extractor":
        return cls(
            variable=str(data["variable"]),
            path=str(data["path"]),
            type=str(data.get("type") or "XPath"),
        )


@dataclass(slots=True)
class PerfRequest:
    """One request of a suite. ``order`` defines the execution sequence."""

    id: str
    name: str
    endpoint: str
    request_body: str = ""
    method: str = "POST"
    soap_action: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    extractors: list[Extractor] = field(default_factory=list)
    sla_threshold: float | None = None  # ms
    order: int = 0

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "endpoint": self.endpoint,
            "method": self.method,
            "requestBody": self.request_body,
            "headers": dict(self.headers),
            "extractors": [e.to_dict() for e in self.extractors],
            "order": self.order,
        }
        if self.soap_action is not None:
            out["soapAction"] = self.soap_action
        if self.sla_threshold is not None:
            out["slaThreshold"] = self.sla_threshold
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerfRequest":
        sla = _pick(data, "slaThreshold", "sla_threshold")
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            endpoint=str(data.get("endpoint") or ""),
            request_body=str(_pick(data, "requestBody", "request_body", "") or ""),
            method=str(data.get("method") or "POST"),
            soap_action=_pick(data, "soapAction", "soap_action"),
            headers={str(k): str(v) for k, v in (data.get("headers") or {}).items()},
            extractors=[Extractor.from_dict(e) for e in data.get("extractors") or []],
            sla_threshold=float(sla) if sla is not None else None,
            order=int(data.get("order", 0)),
        )


@dataclass(slots=True)
class Suite:
    """A named, ordered collection of requests plus load parameters."""

    id: str
    name: str
    requests: list[PerfRequest] = field(default_factory=list)
    iterations: int = 1
    warmup_runs: int = 0
    concurrency: int = 1
    delay_between_requests: float = 0.0  # ms
    description: str | None = None
    created_at: int = field(default_factory=now_ms)
    modified_at: int = field(default_factory=now_ms)

    def sorted_requests(self) -> list[PerfRequest]:
        return sorted(self.requests, key=lambda r: r.order)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "requests": [r.to_dict() for r in self.requests],
            "iterations": self.iterations,
            "warmupRuns": self.warmup_runs,
            "concurrency": self.concurrency,
            "delayBetweenRequests": self.delay_between_requests,
            "createdAt": self.created_at,
            "modifiedAt": self.modified_at,
        }
        if self.description is not None:
            out["description"] = self.description
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Suite":
        created = _pick(data, "createdAt", "created_at")
        modified = _pick(data, "modifiedAt", "modified_at")
        ts = now_ms()
        return cls(
            id=str(data["id"]),
            name=str(data.get("name") or data["id"]),
            requests=[PerfRequest.from_dict(r) for r in data.get("requests") or []],
            iterations=int(data.get("iterations", 1)),
            warmup_runs=int(_pick(data, "warmupRuns", "warmup_runs", 0)),
            concurrency=int(data.get("concurrency", 1)),
            delay_between_requests=float(_pick(data, "delayBetweenRequests", "delay_between_requests", 0) or 0),
            description=data.get("description"),
            created_at=int(created) if created is not None else ts,
            modified_at=int(modified) if modified is not None else ts,
        )


class Result:
    """Outcome of one request execution inside a run.

    Uses __slots__ for memory efficiency; a run allocates one per request per iteration.
    """

    __slots__ = (
        "request_id", "request_name", "iteration", "duration", "status",
        "success", "sla_breached", "error", "extracted_values", "timestamp",
    )

    def __init__(
        self,
        request_id: str,
        request_name: str,
        iteration: int,
        duration: float,
        status: int,
        success: bool,
        sla_breached: bool = False,
        error: str | None = None,
        extracted_values: dict[str, str] | None = None,
        timestamp: float = 0.0,
    ) -> None:
        self.request_id = request_id
        self.request_name = request_name
        self.iteration = iteration
        self.duration = duration
        self.status = status
        self.success = success
        self.sla_breached = sla_breached
        self.error = error
        self.extracted_values = extracted_values
        self.timestamp = timestamp

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "requestId": self.request_id,
            "requestName": self.request_name,
            "iteration": self.iteration,
            "duration": self.duration,
            "status": self.status,
            "success": self.success,
            "slaBreached": self.sla_breached,
            "timestamp": self.timestamp,
        }
        if self.error is not None:
            out["error"] = self.error
        if self.extracted_values:
            out["extractedValues"] = dict(self.extracted_values)
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Result":
        return cls(
            request_id=str(_pick(data, "requestId", "request_id", "")),
            request_name=str(_pick(data, "requestName", "request_name", "")),
            iteration=int(data.get("iteration", 0)),
            duration=float(data.get("duration", 0.0)),
            status=int(data.get("status", 0)),
            success=bool(data.get("success", False)),
            sla_breached=bool(_pick(data, "slaBreached", "sla_breached", False)),
            error=data.get("error"),
            extracted_values=_pick(data, "extractedValues", "extracted_values"),
            timestamp=float(data.get("timestamp", 0.0)),
        )

    def __repr__(self) -> str:
        return (
            f"Result(name={self.request_name!r}, iteration={self.iteration}, status={self.status}, "
            f"duration={self.duration:.2f}, success={self.success})"
        )


@dataclass(slots=True)
class PerformanceStats:
    """Aggregate latency statistics of a run (all times in ms)."""

    total_requests: int = 0
    success_count: int = 0
    failure_count: int = 0
    success_rate: float = 0.0  # percent
    avg_response_time: float = 0.0
    min_response_time: float = 0.0
    max_response_time: float = 0.0
    p50: float = 0.0
    p95: float = 0.0
    p99: float = 0.0
    sla_breach_count: int = 0
    # Span between first and last Result timestamp, not the sum of durations
    total_duration: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalRequests": self.total_requests,
            "successCount": self.success_count,
            "failureCount": self.failure_count,
            "successRate": self.success_rate,
            "avgResponseTime": self.avg_response_time,
            "minResponseTime": self.min_response_time,
            "maxResponseTime": self.max_response_time,
            "p50": self.p50,
            "p95": self.p95,
            "p99": self.p99,
            "slaBreachCount": self.sla_breach_count,
            "totalDuration": self.total_duration,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PerformanceStats":
        return cls(
            total_requests=int(_pick(data, "totalRequests", "total_requests", 0)),
            success_count=int(_pick(data, "successCount", "success_count", 0)),
            failure_count=int(_pick(data, "failureCount", "failure_count", 0)),
            success_rate=float(_pick(data, "successRate", "success_rate", 0.0)),
            avg_response_time=float(_pick(data, "avgResponseTime", "avg_response_time", 0.0)),
            min_response_time=float(_pick(data, "minResponseTime", "min_response_time", 0.0)),
            max_response_time=float(_pick(data, "maxResponseTime", "max_response_time", 0.0)),
            p50=float(data.get("p50", 0.0)),
            p95=float(data.get("p95", 0.0)),
            p99=float(data.get("p99", 0.0)),
            sla_breach_count=int(_pick(data, "slaBreachCount", "sla_breach_count", 0)),
            total_duration=float(_pick(data, "totalDuration", "total_duration", 0.0)),
        )


@dataclass(slots=True)
class Run:
    """One execution of a suite. Immutable once stored in history."""

    id: str
    suite_id: str
    suite_name: str
    start_time: int
    end_time: int
    status: RunStatus
    results: list[Result] = field(default_factory=list)
    summary: PerformanceStats = field(default_factory=PerformanceStats)
    environment: str | None = None
    # Message of an uncaught engine exception; status stays COMPLETED
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "suiteId": self.suite_id,
            "suiteName": self.suite_name,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "status": self.status.value,
            "results": [r.to_dict() for r in self.results],
            "summary": self.summary.to_dict(),
        }
        if self.environment is not None:
            out["environment"] = self.environment
        if self.error is not None:
            out["error"] = self.error
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Run":
        return cls(
            id=str(data["id"]),
            suite_id=str(_pick(data, "suiteId", "suite_id")),
            suite_name=str(_pick(data, "suiteName", "suite_name", "")),
            start_time=int(_pick(data, "startTime", "start_time", 0)),
            end_time=int(_pick(data, "endTime", "end_time", 0)),
            status=RunStatus(data.get("status", RunStatus.COMPLETED.value)),
            results=[Result.from_dict(r) for r in data.get("results") or []],
            summary=PerformanceStats.from_dict(data.get("summary") or {}),
            environment=data.get("environment"),
            error=data.get("error"),
        )


@dataclass(slots=True)
class Schedule:
    """Cron-triggered run of a suite."""

    id: str
    suite_id: str
    suite_name: str
    cron_expression: str
    description: str | None = None
    enabled: bool = True
    created_at: int = field(default_factory=now_ms)
    last_run: int | None = None
    last_run_status: RunStatus | None = None
    next_run: int | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "suiteId": self.suite_id,
            "suiteName": self.suite_name,
            "cronExpression": self.cron_expression,
            "enabled": self.enabled,
            "createdAt": self.created_at,
        }
        if self.description is not None:
            out["description"] = self.description
        if self.last_run is not None:
            out["lastRun"] = self.last_run
        if self.last_run_status is not None:
            out["lastRunStatus"] = self.last_run_status.value
        if self.next_run is not None:
            out["nextRun"] = self.next_run
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Schedule":
        status = _pick(data, "lastRunStatus", "last_run_status")
        last_run = _pick(data, "lastRun", "last_run")
        next_run = _pick(data, "nextRun", "next_run")
        created = _pick(data, "createdAt", "created_at")
        return cls(
            id=str(data["id"]),
            suite_id=str(_pick(data, "suiteId", "suite_id")),
            suite_name=str(_pick(data, "suiteName", "suite_name", "")),
            cron_expression=str(_pick(data, "cronExpression", "cron_expression")),
            description=data.get("description"),
            enabled=bool(data.get("enabled", True)),
            created_at=int(created) if created is not None else now_ms(),
            last_run=int(last_run) if last_run is not None else None,
            last_run_status=RunStatus(status) if status else None,
            next_run=int(next_run) if next_run is not None else None,
        )


@dataclass(slots=True)
class IterationRange:
    """Inclusive iteration index range assigned to a worker."""

    start: int
    end: int

    @property
    def count(self) -> int:
        return max(0, self.end - self.start + 1)

    def to_dict(self) -> dict[str, int]:
        return {"start": self.start, "end": self.end}


@dataclass(slots=True)
class Worker:
    """A remote process registered with the coordinator."""

    id: str
    status: WorkerStatus = WorkerStatus.CONNECTED
    max_concurrent: int = 10
    platform: str | None = None
    version: str | None = None
    connected_at: int = field(default_factory=now_ms)
    last_heartbeat: int | None = None
    assigned_iterations: IterationRange | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "maxConcurrent": self.max_concurrent,
            "connectedAt": self.connected_at,
        }
        if self.platform is not None:
            out["platform"] = self.platform
        if self.version is not None:
            out["version"] = self.version
        if self.last_heartbeat is not None:
            out["lastHeartbeat"] = self.last_heartbeat
        if self.assigned_iterations is not None:
            out["assignedIterations"] = self.assigned_iterations.to_dict()
        return out


@dataclass(slots=True)
class CoordinatorStatus:
    """Snapshot published on every coordinator state change."""

    running: bool
    port: int
    workers: list[Worker]
    expected_workers: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "port": self.port,
            "workers": [w.to_dict() for w in self.workers],
            "expectedWorkers": self.expected_workers,
        }
