from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from core.errors import CollectorBusyError, TimedOutError

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class CollectedInteraction:
    """One user response routed to a waiting surface.

    ``surface`` is the key the waiter registered under (a message id for buttons and
    selects, a modal custom id for forms). ``value`` is the pressed button's custom id or
    the first selected option; ``form`` holds submitted text inputs by field key.
    """

    surface: str
    principal_id: int
    value: str | None = None
    values: list[str] = field(default_factory=list)
    form: dict[str, str] = field(default_factory=dict)
    raw: Any = None


Predicate = Callable[[CollectedInteraction], bool]


@dataclass(slots=True)
class _Waiter:
    principal_id: int
    predicate: Predicate | None
    future: asyncio.Future[CollectedInteraction]


class InteractionCollector:
    def __init__(self) -> None:
        self._waiters: dict[str, _Waiter] = {}

    def is_waiting(self, surface: str) -> bool:
        waiter = self._waiters.get(surface)
        return waiter is not None and not waiter.future.done()

    async def wait_for(
        self,
        surface: str,
        principal_id: int,
        *,
        timeout: float,
        predicate: Predicate | None = None,
        also: Sequence[str] = (),
    ) -> CollectedInteraction:
        """Suspend until ``principal_id`` responds on ``surface`` or ``timeout`` elapses.

        ``also`` registers the same wait under extra keys; the first response on any of
        them wins and ``CollectedInteraction.surface`` tells which. Only one wait may be
        outstanding per key. Raises ``TimedOutError`` on expiry; nothing else is touched,
        reverting the UI is the caller's job.
        """
        keys = [surface, *(key for key in also if key != surface)]
        if any(self.is_waiting(key) for key in keys):
            raise CollectorBusyError()
        loop = asyncio.get_running_loop()
        waiter = _Waiter(principal_id=principal_id, predicate=predicate, future=loop.create_future())
        for key in keys:
            self._waiters[key] = waiter
        try:
            return await asyncio.wait_for(waiter.future, timeout=timeout)
        except asyncio.TimeoutError:
            LOGGER.debug("Collector wait on %s timed out after %ss", surface, timeout)
            raise TimedOutError() from None
        finally:
            for key in keys:
                if self._waiters.get(key) is waiter:
                    del self._waiters[key]

    def dispatch(self, interaction: CollectedInteraction) -> bool:
        """Hand a response to its waiter. Returns False when nobody wanted it."""
        waiter = self._waiters.get(interaction.surface)
        if waiter is None or waiter.future.done():
            return False
        if interaction.principal_id != waiter.principal_id:
            return False
        if waiter.predicate is not None and not waiter.predicate(interaction):
            return False
        waiter.future.set_result(interaction)
        return True

    def stop(self, surface: str) -> bool:
        """End an outstanding wait early; the waiting coroutine sees ``TimedOutError``."""
        waiter = self._waiters.pop(surface, None)
        if waiter is None or waiter.future.done():
            return False
        waiter.future.set_exception(TimedOutError("The prompt was cancelled."))
        return True

    def stop_all(self) -> int:
        stopped = 0
        for surface in list(self._waiters):
            stopped += int(self.stop(surface))
        return stopped
