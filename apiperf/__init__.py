"""
apiperf - Performance-suite execution and distributed coordination engine.

Replays ordered request suites under iteration/concurrency load, computes
latency statistics, keeps bounded run history, triggers runs on cron schedules
and fans iteration ranges out to remote workers over WebSocket.
"""

from .exceptions import (
    ApiPerfConfigError,
    ApiPerfError,
    CoordinatorError,
    InvalidCronExpressionError,
    ProtocolError,
)

__all__ = [
    "__version__",
    "ApiPerfConfigError",
    "ApiPerfError",
    "CoordinatorError",
    "InvalidCronExpressionError",
    "ProtocolError",
]

__version__ = "1.0.0"
