import asyncio
from typing import List

import pytest
from typer.testing import CliRunner

from resilink.domain.models.resilience import RateLimitPolicy, RetryConfig
from resilink.infrastructure.cache.response_cache import ResponseCache
from resilink.infrastructure.config.settings import clear_test_config
from resilink.infrastructure.connectivity.monitors import ManualConnectivityMonitor
from resilink.infrastructure.resilience.admission import AdmissionController
from resilink.infrastructure.resilience.retry_queue import RetryQueueManager


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Async sleep replacement that records delays and only yields control."""

    def __init__(self) -> None:
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def policy():
    """Policy with no global floor so per-key intervals apply as configured."""
    return RateLimitPolicy(
        default_interval=5.0,
        min_interval=0.0,
        base_intervals={"fetch-conversations": 15.0, "unread-count": 30.0},
        max_backoff=300.0,
        dynamic_interval_ceiling=120.0,
        cache_max_age=86400.0,
    )


@pytest.fixture
def admission(policy, clock):
    return AdmissionController(policy=policy, clock=clock)


@pytest.fixture
def cache(admission, clock):
    return ResponseCache(admission, clock=clock)


@pytest.fixture
def retry_config():
    return RetryConfig(max_retries=3, base_delay=1.0, max_delay=30.0, exponential_backoff=True)


@pytest.fixture
def retry_queue(retry_config, clock, sleep):
    """Queue with zero jitter and a non-blocking sleep."""
    return RetryQueueManager(default_config=retry_config, clock=clock, sleep=sleep, rng=lambda: 0.0)


@pytest.fixture
def monitor():
    return ManualConnectivityMonitor(is_connected=False, is_internet_reachable=False)


@pytest.fixture(autouse=True)
def reset_test_config():
    """Ensure config overrides never leak between tests."""
    yield
    clear_test_config()
