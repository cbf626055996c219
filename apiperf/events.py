"""Typed in-process pub/sub.

One Signal per event kind; components expose their signals as attributes of an
``events`` object so consumers subscribe to ``engine.events.run_completed``
instead of a string name.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Generic, TypeVar

from .logging_config import get_logger

if TYPE_CHECKING:
    from .models import Run, Schedule

logger = get_logger("events")

T = TypeVar("T")


class Signal(Generic[T]):
    """Callback registry for one event kind.

    Handlers run synchronously in subscription order. A handler that raises is
    logged and the remaining handlers still run.
    """

    __slots__ = ("name", "_handlers")

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[Callable[[T], Any]] = []

    def connect(self, handler: Callable[[T], Any]) -> Callable[[], None]:
        """Subscribe handler. Returns a callable that unsubscribes it."""
        self._handlers.append(handler)
        return lambda: self.disconnect(handler)

    def disconnect(self, handler: Callable[[T], Any]) -> None:
        try:
            self._handlers.remove(handler)
        except ValueError:
            pass

    def clear(self) -> None:
        self._handlers.clear()

    def emit(self, payload: T) -> None:
        for handler in list(self._handlers):
            try:
                handler(payload)
            except Exception:
                logger.exception("Handler for %s failed", self.name)

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"Signal({self.name!r}, handlers={len(self._handlers)})"


class SignalGroup:
    """Base for per-component signal namespaces."""

    def signals(self) -> list[Signal[Any]]:
        return [v for v in vars(self).values() if isinstance(v, Signal)]

    def clear_all(self) -> None:
        for s in self.signals():
            s.clear()


# --- Event payloads ---

@dataclass(slots=True, frozen=True)
class RunStarted:
    run_id: str
    suite_id: str
    suite_name: str


@dataclass(slots=True, frozen=True)
class IterationComplete:
    iteration: int
    total: int


@dataclass(slots=True, frozen=True)
class WorkerResult:
    worker_id: str
    result: Any


@dataclass(slots=True, frozen=True)
class ScheduledRunComplete:
    schedule: "Schedule"
    run: "Run"


@dataclass(slots=True, frozen=True)
class ScheduledRunError:
    schedule: "Schedule"
    error: BaseException
