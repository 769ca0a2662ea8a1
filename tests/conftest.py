"""
Main pytest configuration for docrepo tests.

Fixtures for an in-memory document store, a controllable cache clock,
a recorded (non-blocking) retry sleep and repository construction.
"""

import os

# Set test environment variables before importing docrepo modules
os.environ["DOCREPO_LOG_LEVEL"] = "DEBUG"

import pytest
from unittest.mock import AsyncMock

from docrepo.core.config import Settings
from docrepo.infrastructure.store.memory_store import InMemoryDocumentStore
from docrepo.repositories.base import BaseRepository
from docrepo.services.retry import RetryPolicy


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    """Provide a controllable clock for cache expiry."""
    return FakeClock()


@pytest.fixture
def store():
    """Provide an empty in-memory document store."""
    return InMemoryDocumentStore()


@pytest.fixture
def no_sleep():
    """Retry sleep that records delays instead of waiting."""
    return AsyncMock()


@pytest.fixture
def retry_policy():
    """Default retry policy: 3 retries, 1s base, x2 backoff, 5s cap."""
    return RetryPolicy(max_retries=3, base_delay=1.0, max_delay=5.0, backoff_factor=2.0)


@pytest.fixture
def test_settings():
    """Settings with library defaults."""
    return Settings()


@pytest.fixture
def make_repository(store, clock, no_sleep, retry_policy, test_settings):
    """Factory building repositories wired to the test store, clock and sleep."""

    def factory(collection: str = "crew_members", **overrides):
        options = dict(
            store=store,
            retry_policy=retry_policy,
            settings=test_settings,
            sleep=no_sleep,
            clock=clock,
        )
        options.update(overrides)
        backing_store = options.pop("store")
        return BaseRepository(collection, backing_store, **options)

    return factory
