"""Custom exceptions for apiperf.

All apiperf-specific exceptions inherit from ApiPerfError for unified error handling.
Each exception preserves the original cause chain for debugging.
"""

from __future__ import annotations

from typing import Any


class ApiPerfError(Exception):
    """Base exception for all apiperf errors.
    
    Attributes:
        message: Human-readable error description
        context: Optional dictionary with additional debugging context
        original_error: Original exception that caused this error (if any)
    """

    def __init__(
        self,
        message: str,
        *args: object,
        context: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        super().__init__(message, *args)
        self.message = message
        self.context = context or {}
        self.original_error = original_error
    
    def __str__(self) -> str:
        """Return formatted error message with context if available."""
        base = self.message
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            base = f"{base} [{ctx_str}]"
        if self.original_error:
            base = f"{base} (caused by: {type(self.original_error).__name__}: {self.original_error})"
        return base
    
    def with_context(self, **kwargs: Any) -> "ApiPerfError":
        """Add context to this error and return self for chaining."""
        self.context.update(kwargs)
        return self


class ApiPerfConfigError(ApiPerfError):
    """Raised when a settings, suite or schedule file is invalid or cannot be loaded.
    
    Common causes:
    - File not found
    - Invalid YAML/JSON syntax
    - Missing required fields
    - Out-of-range values (e.g., concurrency < 1, duplicate request order)
    """


class InvalidCronExpressionError(ApiPerfError):
    """Raised by the schedule registry when a cron expression does not parse.
    
    No schedule state is created or changed when this is raised.
    """


class ProtocolError(ApiPerfError):
    """Raised when a coordinator/worker frame cannot be decoded.
    
    Common causes:
    - Frame is not valid JSON
    - Frame is not a JSON object
    - Unknown message type or unsupported protocol version
    """


class CoordinatorError(ApiPerfError):
    """Raised when the coordinator cannot serve or reach workers."""
