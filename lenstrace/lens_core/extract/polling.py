from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

T = TypeVar("T")

Probe = Callable[[], Awaitable[T]]


@dataclass(frozen=True, slots=True)
class RepeatOutcome:
    iterations: int
    capped: bool


async def wait_for(
    probe: Probe[T],
    *,
    timeout: float,
    interval: float = 0.25,
) -> T:
    """Poll ``probe`` until it returns a truthy value.

    Raises ``asyncio.TimeoutError`` once ``timeout`` seconds pass without one.
    A probe call that itself hangs is bounded by the remaining time.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + max(timeout, 0.0)
    interval = max(interval, 0.001)

    while True:
        remaining = deadline - loop.time()
        value = await asyncio.wait_for(probe(), timeout=max(remaining, interval))
        if value:
            return value
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise asyncio.TimeoutError(f"condition not met within {timeout:.1f}s")
        await asyncio.sleep(min(interval, remaining))


async def repeat_while(
    probe: Probe[object],
    action: Callable[[int], Awaitable[None]],
    *,
    max_iterations: int,
) -> RepeatOutcome:
    """Run ``action`` while ``probe`` stays truthy, at most ``max_iterations`` times."""
    iterations = 0
    while iterations < max(max_iterations, 0):
        if not await probe():
            return RepeatOutcome(iterations=iterations, capped=False)
        await action(iterations)
        iterations += 1
    return RepeatOutcome(iterations=iterations, capped=bool(await probe()))
