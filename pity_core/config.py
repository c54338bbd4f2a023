"""Runtime defaults, overridable through environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Final, Optional

from .errors import ConfigurationError

DEFAULT_ITERATIONS: Final[int] = 100_000
DEFAULT_WORKERS: Final[int] = 1
DEFAULT_PROGRESS_STEP: Final[float] = 0.02
MIN_PROGRESS_STEP: Final[float] = 0.01
MAX_PROGRESS_STEP: Final[float] = 0.05

ITERATIONS_ENV: Final[str] = "PITY_SIM_ITERATIONS"
WORKERS_ENV: Final[str] = "PITY_SIM_WORKERS"
TIMEOUT_ENV: Final[str] = "PITY_SIM_TIMEOUT"
PROGRESS_STEP_ENV: Final[str] = "PITY_SIM_PROGRESS_STEP"
RULES_PATH_ENV: Final[str] = "PITY_RULES_PATH"


@dataclass(frozen=True)
class Settings:
    """Process-wide defaults for simulation requests."""

    iterations: int = DEFAULT_ITERATIONS
    workers: int = DEFAULT_WORKERS
    timeout: Optional[float] = None
    progress_step: float = DEFAULT_PROGRESS_STEP
    rules_path: Optional[Path] = None


def _read_number(name: str, default: str, cast: type) -> float:
    raw = os.environ.get(name, default)
    try:
        return cast(raw)
    except ValueError as exc:
        raise ConfigurationError(f"Environment variable {name}={raw!r} is not a valid number") from exc


def clamp_progress_step(step: float) -> float:
    """Keep progress reports between 1% and 5% of the iterations."""

    return min(MAX_PROGRESS_STEP, max(MIN_PROGRESS_STEP, step))


def load_settings() -> Settings:
    """Read settings from the environment.

    Raises
    ------
    ConfigurationError
        If a variable is set to a non-numeric or out-of-range value.
    """

    iterations = int(_read_number(ITERATIONS_ENV, str(DEFAULT_ITERATIONS), int))
    if iterations <= 0:
        raise ConfigurationError(f"{ITERATIONS_ENV} must be positive, got {iterations}")
    workers = int(_read_number(WORKERS_ENV, str(DEFAULT_WORKERS), int))
    if workers < 1:
        raise ConfigurationError(f"{WORKERS_ENV} must be at least 1, got {workers}")

    timeout: Optional[float] = None
    if os.environ.get(TIMEOUT_ENV):
        timeout = _read_number(TIMEOUT_ENV, "0", float)
        if timeout <= 0:
            raise ConfigurationError(f"{TIMEOUT_ENV} must be positive, got {timeout}")

    progress_step = clamp_progress_step(
        _read_number(PROGRESS_STEP_ENV, str(DEFAULT_PROGRESS_STEP), float)
    )
    rules_path_raw = os.environ.get(RULES_PATH_ENV)
    rules_path = Path(rules_path_raw) if rules_path_raw else None
    return Settings(
        iterations=iterations,
        workers=workers,
        timeout=timeout,
        progress_step=progress_step,
        rules_path=rules_path,
    )
