"""In-memory suite store. Persistence is the host's job; this only holds and mutates."""

from __future__ import annotations

from dataclasses import fields, replace
from typing import Any

from .events import Signal, SignalGroup
from .history import HistoryStore
from .logging_config import get_logger
from .models import PerfRequest, Suite, now_ms

logger = get_logger("suites")

_SUITE_FIELDS = {f.name for f in fields(Suite)} - {"id", "created_at", "modified_at"}


class SuiteEvents(SignalGroup):
    def __init__(self) -> None:
        self.suites_updated: Signal[list[Suite]] = Signal("suites_updated")


class SuiteStore:
    """CRUD over Suite entities. Deleting a suite also deletes its run history."""

    def __init__(self, history: HistoryStore | None = None) -> None:
        self._suites: list[Suite] = []
        self._history = history
        self.events = SuiteEvents()

    def get_suites(self) -> list[Suite]:
        return list(self._suites)

    def set_suites(self, suites: list[Suite]) -> None:
        """Bulk load from an external store. Does not emit."""
        self._suites = list(suites)

    def get_suite(self, suite_id: str) -> Suite | None:
        for s in self._suites:
            if s.id == suite_id:
                return s
        return None

    def add_suite(self, suite: Suite) -> Suite:
        self._suites.append(suite)
        self._notify()
        return suite

    def update_suite(self, suite_id: str, **updates: Any) -> Suite | None:
        """Merge updates into the suite and refresh modified_at. Unknown id returns None."""
        unknown = set(updates) - _SUITE_FIELDS
        if unknown:
            raise TypeError(f"Unknown suite fields: {', '.join(sorted(unknown))}")
        for idx, s in enumerate(self._suites):
            if s.id == suite_id:
                updated = replace(s, **updates, modified_at=now_ms())
                self._suites[idx] = updated
                self._notify()
                return updated
        return None

    def delete_suite(self, suite_id: str) -> bool:
        before = len(self._suites)
        self._suites = [s for s in self._suites if s.id != suite_id]
        if len(self._suites) == before:
            return False
        if self._history is not None:
            self._history.delete_by_suite(suite_id)
        self._notify()
        return True

    def add_request(self, suite_id: str, request: PerfRequest) -> PerfRequest | None:
        """Append a request at the end of the suite's execution order."""
        suite = self.get_suite(suite_id)
        if suite is None:
            return None
        request.order = len(suite.requests)
        self.update_suite(suite_id, requests=[*suite.requests, request])
        return request

    def delete_request(self, suite_id: str, request_id: str) -> bool:
        """Remove a request and renumber the remaining ones 0..n-1."""
        suite = self.get_suite(suite_id)
        if suite is None:
            return False
        remaining = [r for r in suite.sorted_requests() if r.id != request_id]
        if len(remaining) == len(suite.requests):
            return False
        for i, r in enumerate(remaining):
            r.order = i
        self.update_suite(suite_id, requests=remaining)
        return True

    def _notify(self) -> None:
        logger.debug("Suites updated: %d suites", len(self._suites))
        self.events.suites_updated.emit(self.get_suites())
