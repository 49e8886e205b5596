# app/services/infrastructure/cache_store.py
"""
Cache stores with per-key TTL.

Key namespaces in use:
    user:{email}              resolved access details (30 min)
    endpoint:map              discovered backend routes (1 hour)
    token, token:endpoint     backend bearer token and the login route that issued it (1 hour)
    assistant-valid:{id}      assistant validation marker (process lifetime)
    insight:{email}:{event}   generated insight text (30 min)

Values are JSON-serialised in every store; reads return fresh copies.
"""

import json
import time
from collections.abc import Callable
from typing import Any

import redis.asyncio as redis
from redis.asyncio.connection import ConnectionPool

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class CacheStore:
    """Interface shared by the memory and Redis stores."""

    async def get(self, key: str) -> Any | None:
        raise NotImplementedError

    async def set_with_ttl(self, key: str, value: Any, ttl_s: int | None = None) -> bool:
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        raise NotImplementedError

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryCacheStore(CacheStore):
    """
    Process-local store.

    Entries expire on read; writes also sweep every expired entry, at most once
    per `sweep_interval_s`, so keys that are never read again do not pile up.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval_s: float = 60.0):
        self._clock = clock
        self._entries: dict[str, tuple[float | None, str]] = {}
        self._sweep_interval_s = sweep_interval_s
        self._next_sweep = clock() + sweep_interval_s

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None

        expires_at, payload = entry
        if expires_at is not None and self._clock() >= expires_at:
            self._entries.pop(key, None)
            return None

        return json.loads(payload)

    async def set_with_ttl(self, key: str, value: Any, ttl_s: int | None = None) -> bool:
        now = self._clock()
        if now >= self._next_sweep:
            self._sweep(now)
        expires_at = now + ttl_s if ttl_s else None
        self._entries[key] = (expires_at, json.dumps(value))
        return True

    def _sweep(self, now: float) -> None:
        expired = [
            key for key, (expires_at, _) in self._entries.items() if expires_at is not None and now >= expires_at
        ]
        for key in expired:
            del self._entries[key]
        self._next_sweep = now + self._sweep_interval_s
        if expired:
            logger.debug("Expired cache entries swept", count=len(expired), remaining=len(self._entries))

    async def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def stored_count(self) -> int:
        """Entries held in memory, including expired ones not yet swept."""
        return len(self._entries)

    def keys(self) -> list[str]:
        """Live keys, mostly useful for diagnostics and tests."""
        now = self._clock()
        return [
            key
            for key, (expires_at, _) in self._entries.items()
            if expires_at is None or now < expires_at
        ]


class RedisCacheStore(CacheStore):
    """Redis-backed store with connection pooling, shared between workers."""

    def __init__(self, redis_url: str, max_connections: int = 20):
        self._redis_url = redis_url
        self._max_connections = max_connections
        self.pool = None
        self.client = None
        self._initialized = False

    async def initialize(self):
        """Initialize connection pool on startup"""
        if self._initialized:
            return

        try:
            self.pool = ConnectionPool.from_url(
                self._redis_url,
                max_connections=self._max_connections,
                retry_on_timeout=True,
                socket_connect_timeout=10,
                socket_timeout=10,
                health_check_interval=30,
                decode_responses=True,
            )
            self.client = redis.Redis(connection_pool=self.pool)

            result = await self.client.ping()
            logger.info("Redis ping successful", result=result)

            self._initialized = True
            logger.info("Redis cache store initialized", max_connections=self._max_connections)

        except Exception as e:
            logger.error("Failed to initialize Redis cache store", error=str(e))
            self._initialized = False
            raise RuntimeError("Redis initialization failed") from e

    async def close(self):
        """Clean shutdown"""
        try:
            if self.client:
                await self.client.aclose()
            if self.pool:
                await self.pool.disconnect()
            self._initialized = False
            logger.info("Redis cache store closed")
        except Exception as e:
            logger.error("Error closing Redis client", error=str(e))

    async def _ensure_initialized(self):
        if not self._initialized:
            logger.warning("Redis not initialized, attempting to initialize")
            await self.initialize()

    async def ping(self) -> bool:
        try:
            await self._ensure_initialized()
            return bool(await self.client.ping())
        except Exception as e:
            logger.error("Redis ping failed", error=str(e))
            return False

    async def get(self, key: str) -> Any | None:
        """Get value; a Redis failure reads as a cache miss."""
        try:
            await self._ensure_initialized()
            result = await self.client.get(key)
        except Exception as e:
            logger.error("Redis GET failed", key=key[:30], error=str(e))
            return None

        if not result:
            return None
        try:
            return json.loads(result)
        except ValueError:
            logger.warning("Invalid cached value in Redis", key=key[:30])
            return None

    async def set_with_ttl(self, key: str, value: Any, ttl_s: int | None = None) -> bool:
        try:
            await self._ensure_initialized()
            payload = json.dumps(value)
            if ttl_s:
                result = await self.client.setex(key, ttl_s, payload)
            else:
                result = await self.client.set(key, payload)
            return bool(result)
        except Exception as e:
            logger.error("Redis SET failed", key=key[:30], error=str(e))
            return False

    async def delete(self, key: str) -> bool:
        try:
            await self._ensure_initialized()
            result = await self.client.delete(key)
            return result > 0
        except Exception as e:
            logger.error("Redis DELETE failed", key=key[:30], error=str(e))
            return False


class NamespacedCache(CacheStore):
    """View of another store with every key prefixed, e.g. per-user insight caches."""

    def __init__(self, store: CacheStore, prefix: str):
        self._store = store
        self._prefix = prefix if prefix.endswith(":") else f"{prefix}:"

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Any | None:
        return await self._store.get(self._key(key))

    async def set_with_ttl(self, key: str, value: Any, ttl_s: int | None = None) -> bool:
        return await self._store.set_with_ttl(self._key(key), value, ttl_s)

    async def delete(self, key: str) -> bool:
        return await self._store.delete(self._key(key))

    async def ping(self) -> bool:
        return await self._store.ping()


def create_cache_store(backend: str, redis_url: str | None = None) -> CacheStore:
    """Build the configured store. Unknown backends are a configuration error."""
    if backend == "memory":
        return MemoryCacheStore()
    if backend == "redis":
        if not redis_url:
            raise ValueError("REDIS_URL is required when CACHE_BACKEND=redis")
        return RedisCacheStore(redis_url)
    raise ValueError(f"Unknown cache backend: {backend}")
