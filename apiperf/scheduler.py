"""Cron-driven suite runs.

Each enabled schedule owns an asyncio timer task that sleeps until the next cron
match and then starts the run without waiting for it. A firing while the engine
is busy is dropped (run_suite returns None); missed firings are never replayed.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Callable, Protocol

from croniter import croniter

from .events import ScheduledRunComplete, ScheduledRunError, Signal, SignalGroup
from .exceptions import InvalidCronExpressionError
from .logging_config import get_logger
from .models import Run, RunStatus, Schedule, now_ms

logger = get_logger("scheduler")

# 5 fields, or 6 with a leading seconds field
CRON_FIELD_COUNTS = (5, 6)


class SuiteRunner(Protocol):
    async def run_suite(self, suite_id: str) -> Run | None: ...


def _local_now() -> datetime:
    return datetime.now().astimezone()


def validate_cron_expression(expression: str) -> None:
    """Raise InvalidCronExpressionError unless expression is a 5/6-field cron string."""
    fields = expression.split() if isinstance(expression, str) else []
    if len(fields) not in CRON_FIELD_COUNTS or not croniter.is_valid(expression, second_at_beginning=True):
        raise InvalidCronExpressionError(
            f"Invalid cron expression: {expression}",
            context={"expression": expression},
        )


def next_fire_time(expression: str, base: datetime) -> datetime:
    """First cron match strictly after base."""
    return croniter(expression, base, second_at_beginning=True).get_next(datetime)


class ScheduleEvents(SignalGroup):
    def __init__(self) -> None:
        self.schedule_added: Signal[Schedule] = Signal("schedule_added")
        self.schedule_updated: Signal[Schedule] = Signal("schedule_updated")
        self.schedule_deleted: Signal[str] = Signal("schedule_deleted")
        self.scheduled_run_complete: Signal[ScheduledRunComplete] = Signal("scheduled_run_complete")
        self.scheduled_run_error: Signal[ScheduledRunError] = Signal("scheduled_run_error")


class ScheduleRegistry:
    """Holds schedules and their timers. Must be used from a running event loop."""

    def __init__(self, engine: SuiteRunner, clock: Callable[[], datetime] = _local_now) -> None:
        self._engine = engine
        self._clock = clock
        self._schedules: dict[str, Schedule] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._inflight: set[asyncio.Task[None]] = set()
        self.events = ScheduleEvents()

    def next_run_time(self, expression: str) -> int:
        return int(next_fire_time(expression, self._clock()).timestamp() * 1000)

    def get_schedules(self) -> list[Schedule]:
        return list(self._schedules.values())

    def get_schedule(self, schedule_id: str) -> Schedule | None:
        return self._schedules.get(schedule_id)

    def is_active(self, schedule_id: str) -> bool:
        """True while the schedule has a live timer."""
        timer = self._timers.get(schedule_id)
        return timer is not None and not timer.done()

    def add_schedule(
        self,
        suite_id: str,
        suite_name: str,
        cron_expression: str,
        description: str | None = None,
    ) -> Schedule:
        """Create an enabled schedule and start its timer. Raises InvalidCronExpressionError."""
        validate_cron_expression(cron_expression)

        schedule = Schedule(
            id=f"schedule-{now_ms()}-{uuid.uuid4().hex[:9]}",
            suite_id=suite_id,
            suite_name=suite_name,
            cron_expression=cron_expression,
            description=description,
            enabled=True,
            created_at=now_ms(),
            next_run=self.next_run_time(cron_expression),
        )
        self._start(schedule)
        logger.info("Schedule %s added for suite %s (%s)", schedule.id, suite_name, cron_expression)
        self.events.schedule_added.emit(schedule)
        return schedule

    def update_schedule(
        self,
        schedule_id: str,
        *,
        cron_expression: str | None = None,
        description: str | None = None,
        enabled: bool | None = None,
    ) -> Schedule | None:
        """Apply changes and restart the timer if enabled. Disabled schedules stay listed without a timer."""
        existing = self._schedules.get(schedule_id)
        if existing is None:
            return None

        if cron_expression is not None:
            validate_cron_expression(cron_expression)

        changes: dict[str, object] = {}
        if cron_expression is not None:
            changes["cron_expression"] = cron_expression
        if description is not None:
            changes["description"] = description
        if enabled is not None:
            changes["enabled"] = enabled
        updated = replace(existing, **changes)

        self._stop_timer(schedule_id)
        if updated.enabled:
            updated.next_run = self.next_run_time(updated.cron_expression)
            self._start(updated)
        else:
            self._schedules[schedule_id] = updated

        logger.info("Schedule %s updated (enabled=%s)", schedule_id, updated.enabled)
        self.events.schedule_updated.emit(updated)
        return updated

    def delete_schedule(self, schedule_id: str) -> bool:
        if schedule_id not in self._schedules:
            return False
        self._stop_timer(schedule_id)
        del self._schedules[schedule_id]
        self.events.schedule_deleted.emit(schedule_id)
        return True

    def load_schedules(self, schedules: list[Schedule]) -> None:
        """Replace everything with the snapshot. Only enabled entries are kept and started."""
        self.stop_all()
        for schedule in schedules:
            if schedule.enabled:
                self._start(schedule)
            else:
                logger.debug("Skipping disabled schedule %s from snapshot", schedule.id)

    def stop_all(self) -> None:
        for schedule_id in list(self._timers):
            self._stop_timer(schedule_id)
        self._schedules.clear()

    def dispose(self) -> None:
        self.stop_all()
        self.events.clear_all()

    def _start(self, schedule: Schedule) -> None:
        loop = asyncio.get_running_loop()
        self._schedules[schedule.id] = schedule
        self._timers[schedule.id] = loop.create_task(
            self._timer_loop(schedule), name=f"schedule:{schedule.id}",
        )

    def _stop_timer(self, schedule_id: str) -> None:
        timer = self._timers.pop(schedule_id, None)
        if timer is not None:
            timer.cancel()

    async def _timer_loop(self, schedule: Schedule) -> None:
        base = self._clock()
        while True:
            now = self._clock()
            if now > base:
                # Missed firings are skipped, never queued
                base = now
            fire_at = next_fire_time(schedule.cron_expression, base)
            schedule.next_run = int(fire_at.timestamp() * 1000)
            delay = (fire_at - self._clock()).total_seconds()
            if delay > 0:
                await asyncio.sleep(delay)
            base = fire_at

            task = asyncio.create_task(self._execute_schedule(schedule))
            self._inflight.add(task)
            task.add_done_callback(self._inflight.discard)

    async def _execute_schedule(self, schedule: Schedule) -> None:
        logger.info("Running scheduled suite: %s", schedule.suite_name)
        try:
            run = await self._engine.run_suite(schedule.suite_id)
        except Exception as e:
            logger.exception("Error running scheduled suite %s", schedule.suite_name)
            schedule.last_run = now_ms()
            schedule.last_run_status = RunStatus.FAILED
            self.events.scheduled_run_error.emit(ScheduledRunError(schedule=schedule, error=e))
            return

        if run is None:
            logger.info("Scheduled run of %s dropped (engine busy or suite missing)", schedule.suite_name)
            return

        schedule.last_run = now_ms()
        schedule.last_run_status = run.status
        schedule.next_run = self.next_run_time(schedule.cron_expression)
        self.events.scheduled_run_complete.emit(ScheduledRunComplete(schedule=schedule, run=run))
