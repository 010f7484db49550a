"""Pytest configuration and fixtures shared across all test modules.

Environment defaults are set before any app import so Pydantic settings
never read a developer's .env file and always use the in-memory store.
"""

import os

# CRITICAL: Set this before any imports that might load settings
os.environ["TESTING"] = "true"

os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_ENABLED", "true")
os.environ.setdefault("RATE_LIMIT_CLEANUP_INTERVAL_SECONDS", "0")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest  # noqa: E402

from app.adapters.rate_limit.in_memory import InMemoryQuotaStore  # noqa: E402
from app.core.rate_limit import reset_rate_limiters  # noqa: E402


class FakeClock:
    """Deterministic clock for window and block arithmetic."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.current = start

    def __call__(self) -> float:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture(autouse=True)
def isolated_rate_limiters():
    """Give every test a fresh process-wide store and limiter cache."""
    reset_rate_limiters()
    yield
    reset_rate_limiters()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryQuotaStore:
    return InMemoryQuotaStore()
