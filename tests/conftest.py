import asyncio

import pytest
from typer.testing import CliRunner

from callguard.core.services.guard_service import CallGuardService
from callguard.infrastructure.cache.result_cache import ResultCache
from callguard.infrastructure.config.settings import clear_test_config
from callguard.infrastructure.monitoring.call_monitor import CallMonitor
from callguard.infrastructure.resilience.rate_gate import RateGate


class FakeClock:
    """Manually driven clock; its ``sleep`` advances time instead of waiting."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += max(0.0, seconds)
        # Let other tasks run, as a real sleep would
        await asyncio.sleep(0)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


GATE_DEFAULTS = dict(
    min_delay_ms=100,
    max_delay_ms=5000,
    queries_per_second=100,
    queries_per_100_seconds=10000,
    max_consecutive_failures=3,
)


@pytest.fixture
def make_gate(clock):
    """Factory for RateGates on the fake clock; keyword arguments override the defaults."""
    def _make(**overrides):
        params = {**GATE_DEFAULTS, **overrides}
        return RateGate(clock=clock, sleep=clock.sleep, **params)
    return _make


@pytest.fixture
def rate_gate(make_gate):
    """RateGate with the documented defaults, driven by the fake clock."""
    return make_gate()


@pytest.fixture
def result_cache(clock):
    return ResultCache(default_ttl=300, max_entries=10, clock=clock)


@pytest.fixture
def call_monitor(clock, rate_gate, result_cache):
    return CallMonitor(rate_gate=rate_gate, cache=result_cache, clock=clock)


@pytest.fixture
def guard(rate_gate, result_cache, call_monitor):
    return CallGuardService(rate_gate=rate_gate, cache=result_cache, monitor=call_monitor)


@pytest.fixture(autouse=True)
def reset_test_config():
    """Drops configuration overrides set by a test."""
    yield
    clear_test_config()
