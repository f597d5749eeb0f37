"""Domain-specific exceptions for the compartmental engine."""

from __future__ import annotations

from typing import Optional


class CompartmentalError(RuntimeError):
    """Base class for compartmental engine errors."""


class ConfigurationError(CompartmentalError):
    """Raised when a model, parameter set, initial state or time grid is invalid."""


class IntegrationError(CompartmentalError):
    """Raised when the numerical solver fails to produce a complete trajectory."""

    def __init__(self, message: str, *, last_time: Optional[float] = None) -> None:
        if last_time is not None:
            message = f"{message} (last time reached: t={last_time:g})"
        super().__init__(message)
        self.last_time = last_time


class InvariantError(CompartmentalError):
    """Raised when a caller opts into treating invariant violations as fatal."""


__all__ = [
    "CompartmentalError",
    "ConfigurationError",
    "IntegrationError",
    "InvariantError",
]
