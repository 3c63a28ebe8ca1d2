from __future__ import annotations

import asyncio

import pytest

from core.errors import CollectorBusyError, TimedOutError
from services.collector import CollectedInteraction, InteractionCollector

SURFACE = "message-1"
OWNER = 10


async def _started(collector: InteractionCollector, surface: str = SURFACE, **kwargs: object) -> asyncio.Task:
    task = asyncio.create_task(collector.wait_for(surface, OWNER, timeout=kwargs.pop("timeout", 1.0), **kwargs))
    await asyncio.sleep(0)
    return task


@pytest.mark.asyncio
async def test_dispatch_resolves_waiter() -> None:
    collector = InteractionCollector()
    task = await _started(collector)

    assert collector.is_waiting(SURFACE)
    assert collector.dispatch(CollectedInteraction(surface=SURFACE, principal_id=OWNER, value="confirm"))

    reply = await task
    assert reply.value == "confirm"
    assert not collector.is_waiting(SURFACE)


@pytest.mark.asyncio
async def test_other_principals_and_surfaces_are_ignored() -> None:
    collector = InteractionCollector()
    task = await _started(collector)

    assert not collector.dispatch(CollectedInteraction(surface=SURFACE, principal_id=OWNER + 1, value="x"))
    assert not collector.dispatch(CollectedInteraction(surface="elsewhere", principal_id=OWNER, value="x"))
    assert not task.done()

    collector.dispatch(CollectedInteraction(surface=SURFACE, principal_id=OWNER, value="ok"))
    assert (await task).value == "ok"


@pytest.mark.asyncio
async def test_predicate_filters_responses() -> None:
    collector = InteractionCollector()
    task = await _started(collector, predicate=lambda reply: reply.value == "yes")

    assert not collector.dispatch(CollectedInteraction(surface=SURFACE, principal_id=OWNER, value="no"))
    assert collector.dispatch(CollectedInteraction(surface=SURFACE, principal_id=OWNER, value="yes"))
    assert (await task).value == "yes"


@pytest.mark.asyncio
async def test_wait_times_out_and_frees_the_surface() -> None:
    collector = InteractionCollector()

    with pytest.raises(TimedOutError):
        await collector.wait_for(SURFACE, OWNER, timeout=0.01)

    assert not collector.is_waiting(SURFACE)
    assert not collector.dispatch(CollectedInteraction(surface=SURFACE, principal_id=OWNER))


@pytest.mark.asyncio
async def test_second_wait_on_same_surface_is_busy() -> None:
    collector = InteractionCollector()
    task = await _started(collector)

    with pytest.raises(CollectorBusyError):
        await collector.wait_for(SURFACE, OWNER, timeout=1.0)

    collector.stop(SURFACE)
    with pytest.raises(TimedOutError):
        await task


@pytest.mark.asyncio
async def test_stop_all_cancels_every_wait() -> None:
    collector = InteractionCollector()
    first = await _started(collector, "a")
    second = await _started(collector, "b")

    assert collector.stop_all() == 2

    for task in (first, second):
        with pytest.raises(TimedOutError):
            await task
    assert collector.stop_all() == 0


@pytest.mark.asyncio
async def test_extra_keys_share_one_wait() -> None:
    collector = InteractionCollector()
    task = await _started(collector, "modal-1", also=[SURFACE])

    assert collector.is_waiting("modal-1") and collector.is_waiting(SURFACE)
    with pytest.raises(CollectorBusyError):
        await collector.wait_for("modal-2", OWNER, timeout=1.0, also=[SURFACE])

    assert collector.dispatch(CollectedInteraction(surface=SURFACE, principal_id=OWNER, value="back"))
    reply = await task
    assert reply.surface == SURFACE
    assert not collector.is_waiting("modal-1")
    assert not collector.is_waiting(SURFACE)
