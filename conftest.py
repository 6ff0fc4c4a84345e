"""Root conftest for enforcing the test suite time limit."""

import os
import time
from typing import Final

import pytest

# Limit for the whole suite when run locally, in seconds
_LOCAL_MAX_DURATION_SECONDS: Final[float] = 35.0

# Limit in CI, where machines are slower and shared
_CI_MAX_DURATION_SECONDS: Final[float] = 60.0


def get_max_duration_seconds() -> float:
    """Return the allowed suite duration, honoring PYTEST_MAX_DURATION when set."""
    if "PYTEST_MAX_DURATION" in os.environ:
        return float(os.environ["PYTEST_MAX_DURATION"])
    if "CI" in os.environ:
        return _CI_MAX_DURATION_SECONDS
    return _LOCAL_MAX_DURATION_SECONDS


@pytest.hookimpl(tryfirst=True)
def pytest_sessionstart(session: pytest.Session) -> None:
    setattr(session, "start_time", time.time())


@pytest.hookimpl(trylast=True)
def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    """Check that the total test session time is under the configured limit."""
    if not hasattr(session, "start_time"):
        return

    duration = time.time() - session.start_time
    max_duration = get_max_duration_seconds()
    if duration > max_duration:
        pytest.exit(
            f"Test suite took {duration:.2f}s, exceeding the {max_duration}s limit",
            returncode=1,
        )
