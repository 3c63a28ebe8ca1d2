from __future__ import annotations

import pytest

from services.cache import MemoryCache
from utils.cooldown import Cooldown


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_cooldown_blocks_until_window_expires() -> None:
    clock = FakeClock()
    cooldown = Cooldown(MemoryCache(clock=clock), "ticket-create")

    assert (await cooldown.peek("1:2")).allowed
    assert (await cooldown.hit("1:2", seconds=30)).allowed

    blocked = await cooldown.peek("1:2")
    assert not blocked.allowed
    assert blocked.retry_after == 30

    clock.now += 31
    assert (await cooldown.peek("1:2")).allowed


@pytest.mark.asyncio
async def test_zero_second_cooldown_never_records() -> None:
    cooldown = Cooldown(MemoryCache(), "ticket-create")
    await cooldown.hit("scope", seconds=0)
    assert (await cooldown.peek("scope")).hits == 0


@pytest.mark.asyncio
async def test_scopes_are_independent_and_resettable() -> None:
    cooldown = Cooldown(MemoryCache(), "ticket-create")
    await cooldown.hit("a", seconds=60)

    assert (await cooldown.peek("b")).allowed
    await cooldown.reset("a")
    assert (await cooldown.peek("a")).allowed
