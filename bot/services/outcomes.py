from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Generic, TypeVar

from core.errors import BotError

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


class OutcomeKind(StrEnum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


@dataclass(slots=True)
class OperationOutcome(Generic[T]):
    kind: OutcomeKind
    message: str
    value: T | None = None
    warnings: list[str] = field(default_factory=list)
    error: BotError | None = None

    @property
    def ok(self) -> bool:
        return self.kind is not OutcomeKind.FAILURE

    @classmethod
    def done(cls, message: str, value: T | None = None, warnings: list[str] | None = None) -> OperationOutcome[T]:
        """Success, degraded to partial when any non-essential step produced a warning."""
        warnings = list(warnings or [])
        kind = OutcomeKind.PARTIAL if warnings else OutcomeKind.SUCCESS
        return cls(kind=kind, message=message, value=value, warnings=warnings)

    @classmethod
    def failed(cls, error: BotError) -> OperationOutcome[T]:
        return cls(kind=OutcomeKind.FAILURE, message=error.user_message, error=error)


async def guarded(operation: Awaitable[OperationOutcome[T]]) -> OperationOutcome[T]:
    """Await a core operation and fold any exception into a failure outcome."""
    try:
        return await operation
    except BotError as exc:
        LOGGER.info("Operation rejected: %s (%s)", exc.user_message, type(exc).__name__)
        return OperationOutcome.failed(exc)
    except Exception:
        LOGGER.exception("Operation failed unexpectedly")
        return OperationOutcome.failed(BotError())
