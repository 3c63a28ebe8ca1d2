from __future__ import annotations

from dataclasses import dataclass

from services.cache import CacheBackend


@dataclass(slots=True)
class CooldownResult:
    allowed: bool
    hits: int
    retry_after: int | None = None


class Cooldown:
    """Fixed-window action cooldown backed by the shared cache."""

    def __init__(self, cache: CacheBackend, namespace: str) -> None:
        self.cache = cache
        self.namespace = namespace

    def _key(self, scope: str) -> str:
        return f"cooldown:{self.namespace}:{scope}"

    async def hit(self, scope: str, *, seconds: int, limit: int = 1) -> CooldownResult:
        if seconds <= 0:
            return CooldownResult(allowed=True, hits=0)
        key = self._key(scope)
        hits = await self.cache.incr(key, ttl=seconds)
        if hits <= limit:
            return CooldownResult(allowed=True, hits=hits)
        return CooldownResult(allowed=False, hits=hits, retry_after=await self.cache.ttl(key))

    async def peek(self, scope: str, *, limit: int = 1) -> CooldownResult:
        key = self._key(scope)
        hits = int(await self.cache.get(key) or 0)
        if hits < limit:
            return CooldownResult(allowed=True, hits=hits)
        return CooldownResult(allowed=False, hits=hits, retry_after=await self.cache.ttl(key))

    async def reset(self, scope: str) -> None:
        await self.cache.delete(self._key(scope))
