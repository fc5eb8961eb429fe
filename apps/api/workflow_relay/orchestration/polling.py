"""Bounded sequential polling with an injectable sleep."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar("T")

BackoffFn = Callable[[int], float]
SleepFn = Callable[[float], Awaitable[None]]


def linear_backoff(step: float = 5.0) -> BackoffFn:
    """Wait ``step * attempt`` seconds before each 1-indexed attempt."""

    def delay(attempt: int) -> float:
        return step * attempt

    return delay


@dataclass(frozen=True)
class PollSchedule:
    """Bounded polling configuration."""

    max_attempts: int = 5
    backoff: BackoffFn = field(default_factory=linear_backoff)

    def delays(self) -> list[float]:
        return [self.backoff(attempt) for attempt in range(1, self.max_attempts + 1)]


@dataclass
class PollResult(Generic[T]):
    """Outcome of ``poll_until``; ``value`` is None when attempts ran out."""

    value: T | None
    attempts: int

    @property
    def found(self) -> bool:
        return self.value is not None


async def poll_until(
    check: Callable[[int], Awaitable[T | None]],
    schedule: PollSchedule,
    sleep: SleepFn = asyncio.sleep,
    label: str = "poll",
) -> PollResult[T]:
    """Run ``check`` sequentially until it returns a value or attempts run out.

    Attempt ``i`` sleeps ``schedule.backoff(i)`` first, then calls
    ``check(i)``.
    """
    for attempt in range(1, schedule.max_attempts + 1):
        wait = schedule.backoff(attempt)
        logger.info(f"{label}: attempt {attempt}/{schedule.max_attempts}, waiting {wait:g}s")
        await sleep(wait)
        value = await check(attempt)
        if value is not None:
            return PollResult(value=value, attempts=attempt)
    return PollResult(value=None, attempts=schedule.max_attempts)
