"""Key-value store backends.

The metadata cache, rate-limit counters and admin sessions all live in an
external key-value store exposing get / put-with-TTL / delete. Redis is the
production backend; ``MemoryKeyValueStore`` serves tests and single-process
development setups.
"""

import time
from typing import Dict, Optional, Protocol, Tuple

import redis.asyncio as redis


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]:
        ...

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    async def delete(self, *keys: str) -> None:
        ...

    async def ping(self) -> bool:
        ...


class RedisKeyValueStore:
    """Key-value store over ``redis.asyncio``."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._redis: Optional[redis.Redis] = None

    def _client(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=2,
                socket_timeout=2,
            )
        return self._redis

    async def get(self, key: str) -> Optional[str]:
        return await self._client().get(key)

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        await self._client().set(key, value, ex=ttl)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client().delete(*keys)

    async def ping(self) -> bool:
        return bool(await self._client().ping())

    async def close(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None


class MemoryKeyValueStore:
    """In-process store with lazy TTL expiry."""

    def __init__(self):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= time.monotonic():
            del self._data[key]
            return None
        return value

    async def put(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = time.monotonic() + ttl if ttl else None
        self._data[key] = (value, expires_at)

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def ping(self) -> bool:
        return True

    async def close(self):
        self._data.clear()
