"""
Exception types.

Configuration mistakes (unknown strategy, unknown export format, unknown
measurement id) are raised. Content problems never are: the pipeline turns
them into a passthrough result with ``success=False``.
"""

from typing import Iterable, Optional


class ContextPressError(Exception):
    """Base class for all contextpress errors."""


class InvalidInput(ContextPressError):
    """Content that cannot be processed (non-string, undecodable, ...)."""


class StrategyNotFound(ContextPressError, KeyError):
    """Unknown compression or summarization strategy name."""

    def __init__(self, name: str, available: Optional[Iterable[str]] = None):
        self.name = name
        self.available = sorted(available) if available else []
        message = f"Unknown strategy: {name!r}"
        if self.available:
            message += f" (available: {', '.join(self.available)})"
        super().__init__(message)

    def __str__(self) -> str:
        return self.args[0]


class UnsupportedFormat(ContextPressError, ValueError):
    """Unknown export format."""


class MeasurementNotFound(ContextPressError, KeyError):
    """No measurement with the requested id."""

    def __str__(self) -> str:
        return self.args[0] if self.args else "Measurement not found"


class StageFailure(ContextPressError):
    """Wraps an exception raised inside a pipeline stage."""

    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"{stage} failed: {type(cause).__name__}: {cause}")
