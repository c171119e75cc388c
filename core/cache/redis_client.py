"""
Redis cache handle with in-memory fallback.

When Redis is reachable it backs the cache; otherwise a simple in-memory
dict is used so the service keeps working without Redis. The handle is
created once by the application wiring and passed to the services that
need it.

Usage:
    from core.cache.redis_client import RedisClient

    cache = await RedisClient.create(settings.redis_url)
    await cache.set_json("voucher_book:123", {"id": "123"}, ex=300)
    value = await cache.get_json("voucher_book:123")
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# In-memory fallback (single-process only)
# ---------------------------------------------------------------------------

class InMemoryBackend:
    """Dict-based fallback that mimics a tiny subset of the Redis async API."""

    def __init__(self):
        self._store: dict[str, tuple[Any, Optional[float]]] = {}  # key -> (value, expire_ts)

    async def get(self, key: str) -> Optional[str]:
        entry = self._store.get(key)
        if entry is None:
            return None
        value, expires = entry
        if expires is not None and time.time() > expires:
            del self._store[key]
            return None
        return value

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        expires = (time.time() + ex) if ex else None
        self._store[key] = (value, expires)
        return True

    async def delete(self, *keys: str) -> int:
        count = 0
        for k in keys:
            if k in self._store:
                del self._store[k]
                count += 1
        return count

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        self._store.clear()


# ---------------------------------------------------------------------------
# Redis wrapper
# ---------------------------------------------------------------------------

class RedisClient:
    """
    Async cache client that auto-falls back to InMemoryBackend.

    Call ``await RedisClient.create(url)`` to connect, or
    ``RedisClient.in_memory()`` for a process-local cache.
    """

    def __init__(self, backend: Any, *, is_real: bool):
        self._backend = backend
        self._is_real = is_real

    @classmethod
    async def create(cls, url: Optional[str] = None) -> "RedisClient":
        """
        Factory: try connecting to Redis, fall back to in-memory.

        Args:
            url: Redis URL (e.g. ``redis://localhost:6379/0``).
                 If None, skips Redis entirely and uses in-memory.
        """
        if url:
            try:
                import redis.asyncio as aioredis
                client = aioredis.from_url(url, decode_responses=True)
                await client.ping()
                logger.info("Redis connected: %s", url)
                return cls(client, is_real=True)
            except Exception as exc:
                logger.warning("Redis unavailable (%s), using in-memory fallback", exc)

        return cls.in_memory()

    @classmethod
    def in_memory(cls) -> "RedisClient":
        return cls(InMemoryBackend(), is_real=False)

    # -- delegate common operations -----------------------------------------

    async def get(self, key: str) -> Optional[str]:
        return await self._backend.get(key)

    async def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        return await self._backend.set(key, value, ex=ex)

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return await self._backend.delete(*keys)

    async def ping(self) -> bool:
        return await self._backend.ping()

    async def close(self) -> None:
        await self._backend.close()

    # -- JSON helpers -------------------------------------------------------

    async def get_json(self, key: str) -> Optional[Any]:
        raw = await self.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Dropping unreadable cache entry %s", key)
            await self.delete(key)
            return None

    async def set_json(self, key: str, value: Any, ex: Optional[int] = None) -> bool:
        return await self.set(key, json.dumps(value, default=str), ex=ex)

    @property
    def is_real_redis(self) -> bool:
        return self._is_real
