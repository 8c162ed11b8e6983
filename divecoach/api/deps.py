"""
API Dependencies

Builds the service graph once per process and exposes it to routes through
FastAPI dependencies. Routes read `request.app.state.services`, so tests
hand a pre-built CoachServices to create_app() or override the getters via
app.dependency_overrides.

Backends:
    DIVECOACH_REDIS_URL set   -> circuit state, cache and monitoring in Redis
    DIVECOACH_REDIS_URL empty -> in-process stores (single instance only)
"""

from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Depends, Request
from redis.asyncio import Redis

from divecoach.clients.dive_logs import DiveLogRepository, SupabaseDiveLogRepository
from divecoach.clients.knowledge import KnowledgeBaseClient
from divecoach.clients.openai_chat import OpenAIChatClient
from divecoach.core.config import Settings, get_settings
from divecoach.observability.logging import get_logger
from divecoach.resilience.circuit_breaker import CircuitBreakerRegistry
from divecoach.resilience.retry import RetryExecutor
from divecoach.resilience.store import (
    InMemoryResilienceStore,
    RedisResilienceStore,
    ResilienceStore,
)
from divecoach.services.cache import ResponseCache
from divecoach.services.coaching import CoachingService
from divecoach.services.monitoring import MonitoringService
from divecoach.services.repository import (
    InMemoryMonitoringRepository,
    MonitoringRepository,
    RedisMonitoringRepository,
)
from divecoach.services.usage import UsageRecorder

logger = get_logger(__name__)


@dataclass
class CoachServices:
    """The wired service graph held on app.state.services."""

    settings: Settings
    circuit_store: ResilienceStore
    cache_store: ResilienceStore
    repository: MonitoringRepository
    circuit_breakers: CircuitBreakerRegistry
    executor: RetryExecutor
    cache: ResponseCache
    recorder: UsageRecorder
    monitoring: MonitoringService
    coaching: CoachingService
    llm: Optional[OpenAIChatClient] = None
    redis: Optional[Redis] = None

    async def aclose(self) -> None:
        if self.llm is not None:
            await self.llm.close()
        if self.redis is not None:
            await self.redis.aclose()
        else:
            await self.circuit_store.close()
            await self.cache_store.close()


def build_services(
    settings: Optional[Settings] = None,
    redis_client: Optional[Redis] = None,
    llm: Optional[OpenAIChatClient] = None,
    knowledge: Optional[KnowledgeBaseClient] = None,
    dive_logs: Optional[DiveLogRepository] = None,
) -> CoachServices:
    """
    Wire stores, resilience components and services from settings.

    Explicit arguments win over what settings would construct, which is how
    tests inject fakeredis and mocked clients.

    Args:
        settings: Application settings (default: get_settings())
        redis_client: Redis connection (default: from settings.redis_url)
        llm: OpenAI client (default: built when an API key is configured)
        knowledge: Knowledge retrieval (default: Pinecone when configured)
        dive_logs: Dive log source (default: Supabase when configured)

    Returns:
        CoachServices ready for create_app()
    """
    settings = settings or get_settings()

    if redis_client is None and settings.redis_url:
        redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)

    circuit_store: ResilienceStore
    cache_store: ResilienceStore
    repository: MonitoringRepository
    if redis_client is not None:
        circuit_store = RedisResilienceStore(redis_client, settings.redis_key_prefix)
        cache_store = circuit_store
        repository = RedisMonitoringRepository(redis_client, settings.redis_key_prefix)
        logger.info("resilience backend selected", backend="redis")
    else:
        circuit_store = InMemoryResilienceStore()
        cache_store = InMemoryResilienceStore(max_entries=settings.cache_max_entries)
        repository = InMemoryMonitoringRepository()
        logger.info("resilience backend selected", backend="memory")

    if llm is None and settings.openai_configured:
        llm = OpenAIChatClient(
            api_key=settings.openai_api_key.get_secret_value(),
            model=settings.openai_model,
            embedding_model=settings.openai_embedding_model,
        )
    if llm is None:
        logger.warning("openai not configured, chat endpoints will use fallback replies")

    if knowledge is None and settings.pinecone_configured and llm is not None:
        knowledge = KnowledgeBaseClient.connect(
            settings.pinecone_api_key.get_secret_value(),
            settings.pinecone_index,
            embedder=llm.embed,
            top_k=settings.knowledge_top_k,
        )

    if dive_logs is None and settings.supabase_configured:
        dive_logs = SupabaseDiveLogRepository.connect(
            settings.supabase_url, settings.supabase_key.get_secret_value()
        )

    circuit_breakers = CircuitBreakerRegistry(
        circuit_store,
        failure_threshold=settings.circuit_breaker_failure_threshold,
        cooldown_seconds=settings.circuit_breaker_cooldown_seconds,
        trial_timeout_seconds=settings.circuit_breaker_trial_timeout_seconds,
    )
    recorder = UsageRecorder(repository)
    executor = RetryExecutor(
        circuit_breakers,
        error_sink=recorder,
        max_retries=settings.retry_max_attempts,
        base_delay_seconds=settings.retry_base_delay_seconds,
        max_delay_seconds=settings.retry_max_delay_seconds,
        jitter_ratio=settings.retry_jitter_ratio,
    )
    cache = ResponseCache(cache_store, ttl_seconds=settings.cache_ttl_seconds)
    coaching = CoachingService(
        executor,
        cache,
        recorder,
        llm=llm,
        knowledge=knowledge,
        dive_logs=dive_logs,
        structured_timeout_seconds=settings.structured_chat_timeout_seconds,
        general_timeout_seconds=settings.general_chat_timeout_seconds,
        dive_log_limit=settings.dive_log_limit,
    )

    return CoachServices(
        settings=settings,
        circuit_store=circuit_store,
        cache_store=cache_store,
        repository=repository,
        circuit_breakers=circuit_breakers,
        executor=executor,
        cache=cache,
        recorder=recorder,
        monitoring=MonitoringService(repository, circuit_breakers),
        coaching=coaching,
        llm=llm,
        redis=redis_client,
    )


# =============================================================================
# FastAPI dependencies
# =============================================================================


def get_services(request: Request) -> CoachServices:
    return request.app.state.services


def get_coaching_service(services: CoachServices = Depends(get_services)) -> CoachingService:
    return services.coaching


def get_monitoring_service(services: CoachServices = Depends(get_services)) -> MonitoringService:
    return services.monitoring


def get_usage_recorder(services: CoachServices = Depends(get_services)) -> UsageRecorder:
    return services.recorder


__all__ = [
    "CoachServices",
    "build_services",
    "get_coaching_service",
    "get_monitoring_service",
    "get_services",
    "get_usage_recorder",
]
