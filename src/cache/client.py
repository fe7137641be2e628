"""Key-value cache backends.

Backs the access-token blacklist, the login rate limiter and best-effort read
caching. Redis is used in production; the in-memory backend is used when no
``REDIS_URL`` is configured and in tests, where its clock can be driven manually.

Usage:
    from src.cache.client import get_cache

    cache = get_cache()
    await cache.set("key", "value", ttl=300)
    value = await cache.get("key")
"""

import asyncio
import logging
import math
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class Cache(Protocol):
    """Operations the auth core needs from a shared cache.

    Every method is a single atomic operation against one key.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl: float | None = None) -> None: ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def ttl(self, key: str) -> float | None: ...

    async def window_prune_and_count(self, key: str, cutoff: float) -> tuple[int, float | None]: ...

    async def window_add(self, key: str, member: str, score: float, ttl: float) -> None: ...

    async def close(self) -> None: ...


class InMemoryCache:
    """Process-local cache for development and testing.

    Args:
        clock: Returns the current time in seconds. Tests pass a fake clock to
            expire entries without sleeping.

    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._data: dict[str, tuple[str | dict[str, float], float | None]] = {}
        self._lock = asyncio.Lock()

    def _entry(self, key: str) -> tuple[str | dict[str, float], float | None] | None:
        """Return a live entry, evicting it if expired. Caller holds the lock."""
        entry = self._data.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return entry

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._entry(key)
            if entry is None:
                return None
            value, _ = entry
            if not isinstance(value, str):
                raise TypeError(f"Key {key!r} holds a sliding window, not a string")
            return value

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        if ttl is not None and ttl <= 0:
            raise ValueError("ttl must be positive")
        async with self._lock:
            expires_at = self._clock() + ttl if ttl is not None else None
            self._data[key] = (value, expires_at)

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            deleted = 0
            for key in keys:
                if self._entry(key) is not None:
                    del self._data[key]
                    deleted += 1
            return deleted

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._entry(key) is not None

    async def ttl(self, key: str) -> float | None:
        async with self._lock:
            entry = self._entry(key)
            if entry is None or entry[1] is None:
                return None
            return entry[1] - self._clock()

    async def window_prune_and_count(self, key: str, cutoff: float) -> tuple[int, float | None]:
        async with self._lock:
            entry = self._entry(key)
            if entry is None:
                return 0, None
            members, expires_at = entry
            if not isinstance(members, dict):
                raise TypeError(f"Key {key!r} holds a string, not a sliding window")
            kept = {member: score for member, score in members.items() if score > cutoff}
            if not kept:
                del self._data[key]
                return 0, None
            self._data[key] = (kept, expires_at)
            return len(kept), min(kept.values())

    async def window_add(self, key: str, member: str, score: float, ttl: float) -> None:
        async with self._lock:
            entry = self._entry(key)
            members: dict[str, float] = {}
            if entry is not None:
                if not isinstance(entry[0], dict):
                    raise TypeError(f"Key {key!r} holds a string, not a sliding window")
                members = entry[0]
            members[member] = score
            self._data[key] = (members, self._clock() + ttl)

    async def close(self) -> None:
        async with self._lock:
            self._data.clear()


class RedisCache:
    """Redis-backed cache for production.

    Sliding-window operations run as MULTI/EXEC pipelines so concurrent
    requests across processes never interleave a prune with a count.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0, client: aioredis.Redis | None = None):
        self.redis_url = redis_url
        self.client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )

    async def ping(self) -> None:
        await self.client.ping()

    async def get(self, key: str) -> str | None:
        return await self.client.get(key)

    async def set(self, key: str, value: str, ttl: float | None = None) -> None:
        if ttl is None:
            await self.client.set(key, value)
            return
        if ttl <= 0:
            raise ValueError("ttl must be positive")
        await self.client.set(key, value, px=max(1, int(ttl * 1000)))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self.client.delete(*keys))

    async def exists(self, key: str) -> bool:
        return bool(await self.client.exists(key))

    async def ttl(self, key: str) -> float | None:
        # PTTL: -2 missing key, -1 no expiry
        remaining_ms = await self.client.pttl(key)
        if remaining_ms < 0:
            return None
        return remaining_ms / 1000

    async def window_prune_and_count(self, key: str, cutoff: float) -> tuple[int, float | None]:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, cutoff)
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            _, count, oldest = await pipe.execute()
        oldest_score = float(oldest[0][1]) if oldest else None
        return int(count), oldest_score

    async def window_add(self, key: str, member: str, score: float, ttl: float) -> None:
        async with self.client.pipeline(transaction=True) as pipe:
            pipe.zadd(key, {member: score})
            pipe.expire(key, max(1, math.ceil(ttl)))
            await pipe.execute()

    async def close(self) -> None:
        await self.client.aclose()


# Global cache instance
_cache: Cache | None = None


def set_cache(backend: Cache | None) -> None:
    """Install the process-wide cache backend."""
    global _cache
    _cache = backend


def get_cache() -> Cache:
    """Get the process-wide cache backend (usable as a FastAPI dependency)."""
    if _cache is None:
        raise RuntimeError("Cache not initialized. Call init_cache() first.")
    return _cache


async def init_cache(redis_url: str | None, *, socket_timeout: float = 5.0) -> Cache:
    """Create the cache backend: Redis when a URL is configured, memory otherwise."""
    backend: Cache
    if redis_url:
        redis_cache = RedisCache(redis_url, socket_timeout=socket_timeout)
        try:
            await redis_cache.ping()
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {redis_url.split('@')[-1]}: {e}")
            raise
        backend = redis_cache
        logger.info(f"Cache initialized with Redis backend: {redis_url.split('@')[-1]}")
    else:
        backend = InMemoryCache()
        logger.warning("REDIS_URL not set, cache initialized with in-memory backend")

    set_cache(backend)
    return backend


async def close_cache() -> None:
    """Close the process-wide cache backend."""
    global _cache
    if _cache is not None:
        await _cache.close()
        _cache = None
        logger.info("Cache connection closed")
