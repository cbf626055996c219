"""Bounded run history: at most ``limit`` runs kept per suite, oldest evicted first."""

from __future__ import annotations

from .events import Signal, SignalGroup
from .logging_config import get_logger
from .models import Run

logger = get_logger("history")

MAX_HISTORY_PER_SUITE = 5


class HistoryEvents(SignalGroup):
    def __init__(self) -> None:
        self.history_updated: Signal[list[Run]] = Signal("history_updated")
        self.run_expired: Signal[Run] = Signal("run_expired")


class HistoryStore:
    """Insertion-ordered list of finished runs across all suites."""

    def __init__(self, limit: int = MAX_HISTORY_PER_SUITE) -> None:
        if limit < 1:
            raise ValueError("history limit must be >= 1")
        self._limit = limit
        self._runs: list[Run] = []
        self.events = HistoryEvents()

    @property
    def limit(self) -> int:
        return self._limit

    def get_history(self) -> list[Run]:
        return list(self._runs)

    def get_suite_history(self, suite_id: str) -> list[Run]:
        return [r for r in self._runs if r.suite_id == suite_id]

    def set_history(self, runs: list[Run]) -> None:
        """Bulk load from an external store, keeping the newest ``limit`` runs per suite."""
        kept: list[Run] = []
        counts: dict[str, int] = {}
        for run in reversed(runs):
            n = counts.get(run.suite_id, 0)
            if n < self._limit:
                kept.append(run)
                counts[run.suite_id] = n + 1
        kept.reverse()
        if len(kept) < len(runs):
            logger.debug("Dropped %d runs over the per-suite limit while loading", len(runs) - len(kept))
        self._runs = kept

    def add(self, run: Run) -> None:
        self._runs.append(run)
        suite_runs = self.get_suite_history(run.suite_id)
        if len(suite_runs) > self._limit:
            oldest = suite_runs[0]
            self._runs = [r for r in self._runs if r.id != oldest.id]
            logger.debug("Run %s of suite %s expired from history", oldest.id, oldest.suite_id)
            self.events.run_expired.emit(oldest)
        self.events.history_updated.emit(self.get_history())

    def delete_by_suite(self, suite_id: str) -> int:
        """Remove all runs of a suite. Returns the number removed."""
        before = len(self._runs)
        self._runs = [r for r in self._runs if r.suite_id != suite_id]
        removed = before - len(self._runs)
        if removed:
            self.events.history_updated.emit(self.get_history())
        return removed
