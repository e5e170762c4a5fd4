"""Bounded waiting helpers shared by the collector, relay and orchestrator."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from .errors import ThreadRelayError

T = TypeVar("T")

AsyncSleepFn = Callable[[float], Awaitable[None]]


async def with_timeout(
    awaitable: Awaitable[T],
    seconds: float,
    error_factory: Callable[[], ThreadRelayError],
) -> T:
    """Await ``awaitable`` for at most ``seconds`` and raise the taxonomy error on expiry."""
    if seconds <= 0:
        raise ValueError("seconds must be > 0.")
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise error_factory() from exc


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    *,
    attempts: int,
    interval_seconds: float,
    sleep: AsyncSleepFn = asyncio.sleep,
    on_error: Callable[[int, Exception], None] | None = None,
) -> bool:
    """Call ``check`` up to ``attempts`` times, sleeping between calls.

    A raising check consumes one attempt like a falsy one. Returns True on the
    first truthy result and False once the budget is spent.
    """
    if attempts <= 0:
        raise ValueError("attempts must be > 0.")
    for attempt in range(1, attempts + 1):
        try:
            if await check():
                return True
        except Exception as exc:
            if on_error is not None:
                on_error(attempt, exc)
        if attempt < attempts:
            await sleep(interval_seconds)
    return False


def ms_to_seconds(value_ms: float) -> float:
    return max(0.0, float(value_ms) / 1000.0)
