"""
Resilience Store

Key/value storage shared by the circuit breaker registry and the response
cache. Two backends:

- InMemoryResilienceStore: per-process, optional TTL and LRU bound
- RedisResilienceStore: shared across instances behind a load balancer

Values are JSON-compatible (callers store model_dump(mode="json") output).

Pattern: Repository pattern with swappable storage backend
"""

import json
import math
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Callable, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from divecoach.core.exceptions import StoreError


class ResilienceStore(ABC):
    """Async key/value interface for resilience state."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store a value, optionally expiring after ttl_seconds."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """List live keys starting with prefix."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


# =============================================================================
# In-Memory Backend
# =============================================================================


class InMemoryResilienceStore(ResilienceStore):
    """
    Process-local store.

    Entries are kept in access order; once max_entries is exceeded the least
    recently used entry is evicted. Expired entries are dropped on read.

    Args:
        max_entries: Upper bound on stored keys (None = unbounded)
        clock: Monotonic clock used for TTL checks (injectable for tests)
    """

    def __init__(
        self,
        max_entries: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._max_entries = max_entries
        self._clock = clock
        self._data: OrderedDict[str, tuple[Any, Optional[float]]] = OrderedDict()

    def __len__(self) -> int:
        return len(self._data)

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self._clock() >= expires_at

    async def get(self, key: str) -> Optional[Any]:
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if self._expired(expires_at):
            del self._data[key]
            return None
        self._data.move_to_end(key)
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        expires_at = self._clock() + ttl_seconds if ttl_seconds else None
        self._data[key] = (value, expires_at)
        self._data.move_to_end(key)
        if self._max_entries is not None:
            while len(self._data) > self._max_entries:
                self._data.popitem(last=False)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def keys(self, prefix: str = "") -> list[str]:
        live = []
        for key, (_, expires_at) in list(self._data.items()):
            if not key.startswith(prefix):
                continue
            if self._expired(expires_at):
                del self._data[key]
                continue
            live.append(key)
        return live


# =============================================================================
# Redis Backend
# =============================================================================


class RedisResilienceStore(ResilienceStore):
    """
    Redis-backed store.

    Keys are namespaced with key_prefix; values are JSON strings and TTLs
    map to SET ... EX. Redis failures are raised as StoreError.

    Args:
        redis_client: redis.asyncio client (decode_responses=True)
        key_prefix: Namespace prepended to every key
    """

    def __init__(self, redis_client: Redis, key_prefix: str = "divecoach:") -> None:
        self._redis = redis_client
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            data = await self._redis.get(self._key(key))
        except RedisError as e:
            raise StoreError(f"Failed to read {key}: {e}") from e
        if data is None:
            return None
        return json.loads(data)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        ex = math.ceil(ttl_seconds) if ttl_seconds else None
        try:
            await self._redis.set(self._key(key), json.dumps(value), ex=ex)
        except RedisError as e:
            raise StoreError(f"Failed to write {key}: {e}") from e

    async def delete(self, key: str) -> bool:
        try:
            return bool(await self._redis.delete(self._key(key)))
        except RedisError as e:
            raise StoreError(f"Failed to delete {key}: {e}") from e

    async def keys(self, prefix: str = "") -> list[str]:
        found = []
        try:
            async for raw in self._redis.scan_iter(match=f"{self._key(prefix)}*"):
                found.append(raw[len(self._prefix):])
        except RedisError as e:
            raise StoreError(f"Failed to scan {prefix}: {e}") from e
        return found

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()
