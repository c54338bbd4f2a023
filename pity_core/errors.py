"""Exception types shared by the engine, simulator and simulation host."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Optional


class PityCoreError(Exception):
    """Base class for every error raised by :mod:`pity_core`."""


class ConfigurationError(PityCoreError, ValueError):
    """Raised when banner rules or simulation settings are unusable."""


class InputValidationError(PityCoreError, ValueError):
    """Raised when a simulation request is malformed.

    ``problems`` lists every issue found so callers can report them together.
    """

    def __init__(self, problems: Iterable[str] | str) -> None:
        if isinstance(problems, str):
            problems = [problems]
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "Invalid simulation input")


class SimulationCancelled(PityCoreError):
    """Raised from a handle whose simulation was cancelled or superseded."""


class SimulationFailed(PityCoreError):
    """Raised when a worker process aborts with an unexpected exception."""

    def __init__(
        self,
        message: str,
        error_type: str = "RuntimeError",
        remote_traceback: Optional[str] = None,
    ) -> None:
        self.error_type = error_type
        self.remote_traceback = remote_traceback
        super().__init__(f"{error_type}: {message}")


__all__ = [
    "ConfigurationError",
    "InputValidationError",
    "PityCoreError",
    "SimulationCancelled",
    "SimulationFailed",
]
