from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Protocol

import redis.asyncio as redis
from redis.exceptions import RedisError

from core.config import RedisConfig
from core.errors import CacheError

LOGGER = logging.getLogger(__name__)


class CacheBackend(Protocol):
    async def get(self, key: str) -> Any: ...
    async def set(self, key: str, value: Any, ttl: int | None = None) -> None: ...
    async def pop(self, key: str) -> Any: ...
    async def delete(self, key: str) -> None: ...
    async def incr(self, key: str, ttl: int | None = None) -> int: ...
    async def ttl(self, key: str) -> int | None: ...
    async def close(self) -> None: ...


@dataclass(slots=True)
class _MemoryValue:
    value: Any
    expires_at: float | None


class MemoryCache(CacheBackend):
    """Process-local cache used when Redis is disabled and in tests."""

    def __init__(self, clock: Any = time.monotonic) -> None:
        self._store: dict[str, _MemoryValue] = {}
        self._lock = asyncio.Lock()
        self._clock = clock

    def _live(self, key: str) -> _MemoryValue | None:
        entry = self._store.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and self._clock() >= entry.expires_at:
            self._store.pop(key, None)
            return None
        return entry

    def _expiry(self, ttl: int | None) -> float | None:
        return self._clock() + ttl if ttl else None

    async def get(self, key: str) -> Any:
        async with self._lock:
            entry = self._live(key)
            return entry.value if entry else None

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        async with self._lock:
            self._store[key] = _MemoryValue(value=value, expires_at=self._expiry(ttl))

    async def pop(self, key: str) -> Any:
        async with self._lock:
            entry = self._live(key)
            self._store.pop(key, None)
            return entry.value if entry else None

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def incr(self, key: str, ttl: int | None = None) -> int:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                self._store[key] = _MemoryValue(value=1, expires_at=self._expiry(ttl))
                return 1
            entry.value = int(entry.value) + 1
            return entry.value

    async def ttl(self, key: str) -> int | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None or entry.expires_at is None:
                return None
            return max(0, int(entry.expires_at - self._clock()))

    async def close(self) -> None:
        self._store.clear()


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        LOGGER.error("Redis %s failed: %s", operation, exc)
        raise CacheError() from exc


class RedisCache(CacheBackend):
    def __init__(self, url: str, key_prefix: str) -> None:
        self._client = redis.from_url(url, decode_responses=True)
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}"

    async def get(self, key: str) -> Any:
        with _translate_errors("get"):
            return await self._client.get(self._key(key))

    async def set(self, key: str, value: Any, ttl: int | None = None) -> None:
        with _translate_errors("set"):
            await self._client.set(self._key(key), value, ex=ttl or None)

    async def pop(self, key: str) -> Any:
        # GETDEL is atomic, so a confirmation token can only be redeemed once.
        with _translate_errors("getdel"):
            return await self._client.getdel(self._key(key))

    async def delete(self, key: str) -> None:
        with _translate_errors("delete"):
            await self._client.delete(self._key(key))

    async def incr(self, key: str, ttl: int | None = None) -> int:
        with _translate_errors("incr"):
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.incr(self._key(key))
                if ttl:
                    pipe.expire(self._key(key), ttl)
                result = await pipe.execute()
        return int(result[0])

    async def ttl(self, key: str) -> int | None:
        with _translate_errors("ttl"):
            remaining = await self._client.ttl(self._key(key))
        return remaining if remaining >= 0 else None

    async def close(self) -> None:
        await self._client.aclose()


async def build_cache(config: RedisConfig) -> CacheBackend:
    if config.enabled:
        cache = RedisCache(config.url, config.key_prefix)
        LOGGER.info("Using Redis cache at %s", config.url)
        return cache
    return MemoryCache()
