"""Pytest fixtures and fakes for apiperf tests."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable

import pytest

from apiperf.engine import ExecutionEngine
from apiperf.executor import ExecutorResponse
from apiperf.extraction import ExtractionStep
from apiperf.history import HistoryStore
from apiperf.models import Extractor, PerfRequest, Suite
from apiperf.suites import SuiteStore


class FakeExecutor:
    """RequestExecutor that records calls and answers from a per-name table."""

    def __init__(
        self,
        responses: dict[str, ExecutorResponse] | None = None,
        delay: float = 0.0,
        on_call: Callable[[int, str], None] | None = None,
    ) -> None:
        self.responses = responses or {}
        self.delay = delay
        self.on_call = on_call
        self.calls: list[tuple[str, str, str]] = []  # (endpoint, name, body)
        self.methods: list[str | None] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def execute(self, endpoint, name, body, headers=None, method=None) -> ExecutorResponse:
        self.calls.append((endpoint, name, body))
        self.methods.append(method)
        if self.on_call is not None:
            self.on_call(len(self.calls), name)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            response = self.responses.get(name, ExecutorResponse(success=True, raw_response=""))
            if isinstance(response, Exception):
                raise response
            return response
        finally:
            self.in_flight -= 1

    def bodies_for(self, name: str) -> list[str]:
        return [b for _, n, b in self.calls if n == name]


class BodyEvaluator:
    """XPathEvaluator stand-in: the whole body is the extracted value."""

    def evaluate(self, xml: str, path: str) -> str | None:
        return xml or None


def make_request(
    name: str,
    order: int,
    body: str = "",
    extract: str | None = None,
    sla: float | None = None,
) -> PerfRequest:
    return PerfRequest(
        id=f"req-{name}",
        name=name,
        endpoint=f"https://example.com/{name}",
        request_body=body,
        extractors=[Extractor(variable=extract, path="/value")] if extract else [],
        sla_threshold=sla,
        order=order,
    )


def make_suite(
    requests: list[PerfRequest] | None = None,
    iterations: int = 1,
    warmup_runs: int = 0,
    concurrency: int = 1,
    delay: float = 0.0,
    suite_id: str = "suite-1",
) -> Suite:
    return Suite(
        id=suite_id,
        name=f"Suite {suite_id}",
        requests=requests if requests is not None else [make_request("A", 0), make_request("B", 1)],
        iterations=iterations,
        warmup_runs=warmup_runs,
        concurrency=concurrency,
        delay_between_requests=delay,
    )


def make_engine(suite: Suite, executor: FakeExecutor, history_limit: int = 5) -> ExecutionEngine:
    history = HistoryStore(limit=history_limit)
    store = SuiteStore(history=history)
    store.set_suites([suite])
    return ExecutionEngine(store, history, executor, extraction=ExtractionStep(BodyEvaluator()))


@pytest.fixture
def fake_executor() -> FakeExecutor:
    return FakeExecutor()


@pytest.fixture
def suite_yaml_path(tmp_path: Path) -> Path:
    """Minimal valid suite file."""
    content = """
id: checkout
name: Checkout flow
iterations: 3
warmupRuns: 1
concurrency: 1
delayBetweenRequests: 0
requests:
  - id: login
    name: Login
    endpoint: https://api.example.com/login
    requestBody: "<Login><user>${user}</user></Login>"
    order: 0
    extractors:
      - variable: token
        path: //Token
  - id: cart
    name: Cart
    endpoint: https://api.example.com/cart
    requestBody: "<Cart><token>${token}</token></Cart>"
    slaThreshold: 250
    order: 1
"""
    p = tmp_path / "suite.yaml"
    p.write_text(content, encoding="utf-8")
    return p
