"""Latency statistics for finished runs. Pure functions, no state."""

from __future__ import annotations

import math
from typing import Sequence

from .models import PerformanceStats, Result


def percentile(sorted_values: Sequence[float], p: float) -> float:
    """Linearly interpolated percentile of an ascending sequence. Returns 0.0 if empty."""
    if not sorted_values:
        return 0.0
    index = (p / 100.0) * (len(sorted_values) - 1)
    lower = math.floor(index)
    upper = math.ceil(index)
    if lower == upper:
        return float(sorted_values[lower])
    return sorted_values[lower] * (upper - index) + sorted_values[upper] * (index - lower)


def calculate_stats(results: Sequence[Result]) -> PerformanceStats:
    """Aggregate a run's results.

    ``total_duration`` is the span between the first and last result timestamps
    in execution order, not the sum of request durations.
    """
    if not results:
        return PerformanceStats()

    durations = sorted(r.duration for r in results)
    total = len(results)
    success_count = sum(1 for r in results if r.success)
    sla_breach_count = sum(1 for r in results if r.sla_breached)

    return PerformanceStats(
        total_requests=total,
        success_count=success_count,
        failure_count=total - success_count,
        success_rate=success_count / total * 100.0,
        avg_response_time=sum(durations) / total,
        min_response_time=durations[0],
        max_response_time=durations[-1],
        p50=percentile(durations, 50),
        p95=percentile(durations, 95),
        p99=percentile(durations, 99),
        sla_breach_count=sla_breach_count,
        total_duration=results[-1].timestamp - results[0].timestamp,
    )
