"""Shared fixtures."""

import pytest

from dealsearch.config import ApplicationConfig, reset_config


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def app_config():
    """Default configuration, independent of the process environment."""
    return ApplicationConfig()


@pytest.fixture(autouse=True)
def _reset_global_config():
    yield
    reset_config()
