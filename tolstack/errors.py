"""Exceptions raised by the stack-up analysis engine.

Every error is raised before any computation starts, except
PartialComputationError which reports an exhausted time budget.
"""

from __future__ import annotations

from typing import Optional


class TolstackError(Exception):
    """Base class for all engine errors.

    Attributes:
        field: Name of the offending input field, if any.
        contributor: Name of the offending contributor, if any.
        index: Position of the offending contributor/feature, if any.
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        contributor: Optional[str] = None,
        index: Optional[int] = None,
    ) -> None:
        self.field = field
        self.contributor = contributor
        self.index = index
        self.message = message
        context = []
        if contributor is not None:
            context.append(f"contributor={contributor!r}")
        if index is not None:
            context.append(f"index={index}")
        if field is not None:
            context.append(f"field={field!r}")
        if context:
            message = f"{message} ({', '.join(context)})"
        super().__init__(message)


class ValidationError(TolstackError, ValueError):
    """Input data is incomplete or inconsistent."""


class ConfigError(TolstackError, ValueError):
    """Analysis configuration or an enum value is not supported."""


class PartialComputationError(TolstackError, RuntimeError):
    """A computation budget ran out before the analysis completed.

    Attributes:
        completed: Number of iterations finished before aborting.
        requested: Number of iterations requested.
    """

    def __init__(self, message: str, completed: int = 0, requested: int = 0) -> None:
        self.completed = completed
        self.requested = requested
        super().__init__(f"{message} ({completed}/{requested} iterations completed)")
