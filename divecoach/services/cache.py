"""
Response Cache Service

Caches successful coaching replies keyed by what determines them: the
endpoint flavour, the member's experience level, the normalised message and
a coarse dive signature (discipline + 10 m depth bucket).

Entries expire on read once now - stored_at >= TTL. Capacity is bounded by
the backing store (InMemoryResilienceStore evicts least recently used).

Pattern: Repository pattern over a ResilienceStore
"""

import hashlib
import math
import time
from typing import Any, Callable, Optional

from divecoach.core.exceptions import CacheError, StoreError
from divecoach.models.domain import CacheEntry, DiveData
from divecoach.observability.logging import get_logger
from divecoach.observability.metrics import record_cache_operation
from divecoach.resilience.store import ResilienceStore

logger = get_logger(__name__)


DEFAULT_CACHE_TTL_SECONDS = 3600  # 1 hour


def dive_signature(dive_data: Optional[DiveData]) -> Optional[str]:
    """
    Coarse dive signature: discipline plus depth floored to 10 m.

    >>> dive_signature(DiveData(discipline="CWT", depth=47))
    'CWT_40m'
    """
    if dive_data is None or dive_data.depth is None:
        return None
    bucket = math.floor(dive_data.depth / 10) * 10
    return f"{dive_data.discipline or 'unknown'}_{bucket}m"


class ResponseCache:
    """
    TTL cache for coaching replies.

    Attributes:
        ttl_seconds: Lifetime of an entry
    """

    KEY_PREFIX = "cache:response:"

    def __init__(
        self,
        store: ResilienceStore,
        ttl_seconds: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._ttl_seconds = ttl_seconds or DEFAULT_CACHE_TTL_SECONDS
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    @classmethod
    def build_key(
        cls,
        scope: str,
        user_level: str,
        message: str,
        dive_data: Optional[DiveData] = None,
    ) -> str:
        """
        Derive the cache key for a chat request.

        Args:
            scope: Reply flavour ("structured" or "general")
            user_level: "beginner" or "expert"
            message: Raw member message (case and whitespace are normalised)
            dive_data: Dive facts contributing the coarse signature

        Returns:
            Namespaced, hashed key
        """
        normalized = " ".join(message.lower().split())
        composite = f"{user_level}_{normalized}"
        signature = dive_signature(dive_data)
        if signature:
            composite = f"{composite}_{signature}"
        key_hash = hashlib.sha256(composite.encode()).hexdigest()[:32]
        return f"{cls.KEY_PREFIX}{scope}:{key_hash}"

    async def get(self, key: str) -> Optional[Any]:
        """
        Return the cached value, or None when missing or expired.

        Raises:
            CacheError: The backing store failed.
        """
        try:
            data = await self._store.get(key)
            if data is None:
                record_cache_operation("miss")
                return None

            entry = CacheEntry.model_validate(data)
            if self._clock() - entry.stored_at >= self._ttl_seconds:
                await self._store.delete(key)
                record_cache_operation("miss")
                logger.debug("cache entry expired", key=key)
                return None
        except StoreError as e:
            raise CacheError(f"Failed to get cached response: {e}") from e

        record_cache_operation("hit")
        return entry.value

    async def set(self, key: str, value: Any) -> None:
        """
        Store value under key, replacing any previous entry.

        Raises:
            CacheError: The backing store failed.
        """
        entry = CacheEntry(key=key, value=value, stored_at=self._clock())
        try:
            await self._store.set(key, entry.model_dump(mode="json"), ttl_seconds=self._ttl_seconds)
        except StoreError as e:
            raise CacheError(f"Failed to cache response: {e}") from e

    async def invalidate(self, key: str) -> bool:
        try:
            return await self._store.delete(key)
        except StoreError as e:
            raise CacheError(f"Failed to invalidate cache: {e}") from e
