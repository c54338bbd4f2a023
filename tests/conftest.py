import os

from pity_core.config import (
    ITERATIONS_ENV,
    PROGRESS_STEP_ENV,
    RULES_PATH_ENV,
    TIMEOUT_ENV,
    WORKERS_ENV,
)


def pytest_sessionstart(session):
    """Run every test against the built-in defaults, not the developer's environment."""
    for name in (ITERATIONS_ENV, WORKERS_ENV, TIMEOUT_ENV, PROGRESS_STEP_ENV, RULES_PATH_ENV):
        os.environ.pop(name, None)
