"""
Backing key-value caches.

The caching layer only needs ``get``/``set``/``delete`` by string key, with an
optional per-entry TTL in seconds. ``ttl=None`` leaves retention to the
backend's own default.
"""

import math
import time
from typing import Any, Optional, Protocol, Tuple, runtime_checkable

import redis.asyncio as redis
from cachetools import TLRUCache

from shared.errors import CacheBackendError
from shared.logging import get_logger


@runtime_checkable
class KeyValueCache(Protocol):
    """Shared string key-value store with per-entry TTL."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    async def delete(self, key: str) -> None:
        ...


def _entry_expiry(key: str, entry: Tuple[str, Optional[float]], now: float) -> float:
    _, ttl = entry
    return math.inf if ttl is None else now + ttl


class InMemoryLRUCache:
    """Bounded in-process cache, least recently used entries go first.

    Used when no external cache is supplied. Entries expire after their own
    TTL, or ``default_ttl`` when set without one; with neither they stay until
    evicted by size.
    """

    def __init__(self, max_entries: int = 10000, default_ttl: Optional[int] = None, timer=time.monotonic):
        self.max_entries = max_entries
        self.default_ttl = default_ttl
        self._entries: TLRUCache = TLRUCache(maxsize=max_entries, ttu=_entry_expiry, timer=timer)

    async def get(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        return entry[0] if entry is not None else None

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        effective_ttl = self.default_ttl if ttl is None else ttl
        if effective_ttl is not None and effective_ttl <= 0:
            # Already expired, drop any older copy instead of storing it
            self._entries.pop(key, None)
            return
        self._entries[key] = (value, effective_ttl)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def __len__(self) -> int:
        self._entries.expire()
        return len(self._entries)


class RedisKeyValueCache:
    """Redis-backed cache shared across processes."""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        *,
        client: Optional[Any] = None,
        default_ttl: Optional[int] = None,
    ):
        if redis_url is None and client is None:
            raise ValueError("RedisKeyValueCache needs a redis_url or a client")
        self.redis_url = redis_url
        self.default_ttl = default_ttl
        self.logger = get_logger("datasource.cache.redis")
        self._redis: Optional[Any] = client

    async def _get_redis(self):
        """Get Redis connection."""
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                health_check_interval=30
            )
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        try:
            client = await self._get_redis()
            value = await client.get(key)
        except (redis.RedisError, OSError) as e:
            self.logger.error("Redis get failed", key=key, error=str(e))
            raise CacheBackendError("get", str(e), details={"key": key}) from e
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        effective_ttl = self.default_ttl if ttl is None else ttl
        try:
            client = await self._get_redis()
            if effective_ttl is None:
                await client.set(key, value)
            elif effective_ttl <= 0:
                await client.delete(key)
            else:
                await client.set(key, value, ex=effective_ttl)
        except (redis.RedisError, OSError) as e:
            self.logger.error("Redis set failed", key=key, error=str(e))
            raise CacheBackendError("set", str(e), details={"key": key}) from e

    async def delete(self, key: str) -> None:
        try:
            client = await self._get_redis()
            await client.delete(key)
        except (redis.RedisError, OSError) as e:
            self.logger.error("Redis delete failed", key=key, error=str(e))
            raise CacheBackendError("delete", str(e), details={"key": key}) from e

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            client = await self._get_redis()
            await client.ping()
            return True
        except (redis.RedisError, OSError):
            return False

    async def close(self):
        """Close the Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            self.logger.info("Redis cache closed")
