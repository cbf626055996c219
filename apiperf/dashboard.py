"""Rich live progress and summary tables for the CLI."""

from __future__ import annotations

import time

from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .events import IterationComplete, RunStarted
from .logging_config import get_logger
from .models import CoordinatorStatus, Run

logger = get_logger("dashboard")


class RunProgress:
    """Tracks a run from engine events for the live panel."""

    __slots__ = ("suite_name", "iteration", "total", "start_time")

    def __init__(self, suite_name: str = "", total: int = 0) -> None:
        self.suite_name = suite_name
        self.iteration = 0
        self.total = total
        self.start_time = 0.0

    def on_run_started(self, event: RunStarted) -> None:
        self.suite_name = event.suite_name
        self.iteration = 0
        self.start_time = time.perf_counter()

    def on_iteration_complete(self, event: IterationComplete) -> None:
        self.iteration = event.iteration + 1
        self.total = event.total

    @property
    def elapsed(self) -> float:
        return time.perf_counter() - self.start_time if self.start_time else 0.0


def create_live_panel(progress: RunProgress) -> Panel:
    """Create Rich Panel for live display."""
    table = Table.grid(padding=(0, 2))
    table.add_column(style="cyan")
    table.add_column(style="green")
    pct = 100.0 * progress.iteration / progress.total if progress.total else 0.0
    table.add_row("Iterations", f"{progress.iteration}/{progress.total} ({pct:.0f}%)")
    table.add_row("Elapsed", f"{progress.elapsed:.1f}s")
    title = Text()
    title.append("apiperf ", style="bold magenta")
    title.append(f"| {progress.suite_name}", style="dim")
    return Panel(table, title=title, border_style="blue")


def build_summary_table(run: Run) -> Table:
    """Summary of a finished run."""
    s = run.summary
    table = Table(title=f"{run.suite_name} ({run.status.value})", show_header=False)
    table.add_column(style="cyan")
    table.add_column(style="green", justify="right")
    table.add_row("Total requests", str(s.total_requests))
    table.add_row("Success / failure", f"{s.success_count} / {s.failure_count}")
    table.add_row("Success rate %", f"{s.success_rate:.2f}%")
    table.add_row("Avg response (ms)", f"{s.avg_response_time:.1f}")
    table.add_row("Min / max (ms)", f"{s.min_response_time:.1f} / {s.max_response_time:.1f}")
    table.add_row("P50 (ms)", f"{s.p50:.1f}")
    table.add_row("P95 (ms)", f"{s.p95:.1f}")
    table.add_row("P99 (ms)", f"{s.p99:.1f}")
    table.add_row("SLA breaches", str(s.sla_breach_count))
    table.add_row("Duration (ms)", f"{s.total_duration:.0f}")
    if run.error:
        table.add_row("Error", Text(run.error, style="red"))
    return table


def build_workers_table(status: CoordinatorStatus) -> Table:
    """Registered workers with their assignments."""
    table = Table(title=f"Workers ({len(status.workers)}/{status.expected_workers}) on :{status.port}")
    table.add_column("Worker", style="cyan")
    table.add_column("Status")
    table.add_column("Platform", style="dim")
    table.add_column("Iterations", justify="right")
    for w in status.workers:
        rng = w.assigned_iterations
        table.add_row(w.id, w.status.value, w.platform or "-", f"{rng.start}-{rng.end}" if rng else "-")
    return table
