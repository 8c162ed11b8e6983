"""
Pytest configuration and shared fixtures.

Fixtures build the service graph with in-process stores, a controllable
clock and a recording sleep, so resilience behaviour is tested without
wall-clock waits:

- fake_redis: fakeredis client for the Redis-backed components
- clock: mutable UTC clock shared by circuit breakers and monitoring
- sleeps: list collecting every backoff delay the executor awaited
- mock_llm: AsyncMock standing in for OpenAIChatClient
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import fakeredis.aioredis
import pytest

# Add project root to Python path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from divecoach.clients.openai_chat import CompletionResult  # noqa: E402
from divecoach.core.config import Settings  # noqa: E402
from divecoach.resilience.circuit_breaker import CircuitBreakerRegistry  # noqa: E402
from divecoach.resilience.retry import RetryExecutor  # noqa: E402
from divecoach.resilience.store import InMemoryResilienceStore  # noqa: E402
from divecoach.services.cache import ResponseCache  # noqa: E402
from divecoach.services.coaching import CoachingService  # noqa: E402
from divecoach.services.repository import InMemoryMonitoringRepository  # noqa: E402
from divecoach.services.usage import UsageRecorder  # noqa: E402


def pytest_configure(config):
    """Register custom markers for test categorization."""
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests for service interactions")


# =============================================================================
# Time
# =============================================================================


class FakeClock:
    """Callable UTC clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 6, 12, 10, 30, tzinfo=timezone.utc))


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def fake_sleep(sleeps):
    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    return _sleep


# =============================================================================
# Redis
# =============================================================================


@pytest.fixture
def fake_redis():
    """fakeredis client with decode_responses=True."""
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


# =============================================================================
# Settings and services
# =============================================================================


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="development",
        redis_url="",
        openai_api_key="",
        pinecone_api_key="",
        supabase_url="",
        supabase_key="",
    )


@pytest.fixture
def store() -> InMemoryResilienceStore:
    return InMemoryResilienceStore()


@pytest.fixture
def circuit_breakers(store, clock) -> CircuitBreakerRegistry:
    return CircuitBreakerRegistry(store, failure_threshold=5, cooldown_seconds=300, clock=clock)


@pytest.fixture
def repository() -> InMemoryMonitoringRepository:
    return InMemoryMonitoringRepository()


@pytest.fixture
def recorder(repository, clock) -> UsageRecorder:
    return UsageRecorder(repository, clock=clock)


@pytest.fixture
def executor(circuit_breakers, recorder, fake_sleep) -> RetryExecutor:
    return RetryExecutor(circuit_breakers, error_sink=recorder, sleep=fake_sleep)


@pytest.fixture
def response_cache() -> ResponseCache:
    return ResponseCache(InMemoryResilienceStore(max_entries=100), ttl_seconds=3600)


def completion(content: str = "Relax and equalize early.", total_tokens: int = 100) -> CompletionResult:
    return CompletionResult(
        content=content,
        model="gpt-4",
        prompt_tokens=70,
        completion_tokens=total_tokens - 70,
        total_tokens=total_tokens,
    )


@pytest.fixture
def mock_llm() -> MagicMock:
    llm = MagicMock()
    llm.model = "gpt-4"
    llm.complete = AsyncMock(return_value=completion())
    llm.embed = AsyncMock(return_value=[0.1, 0.2, 0.3])
    llm.close = AsyncMock()
    return llm


@pytest.fixture
def coaching(executor, response_cache, recorder, mock_llm) -> CoachingService:
    return CoachingService(executor, response_cache, recorder, llm=mock_llm)


@pytest.fixture
def make_completion():
    return completion
