"""Periodic alarm that asks the orchestrator whether a catalog sync is due."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
import logging

from thread_relay.errors import ThreadRelayError
from thread_relay.sync.orchestrator import BackgroundSyncOrchestrator, SyncOutcome

logger = logging.getLogger(__name__)

ALARM_NAME = "model-sync"

SleepFn = Callable[[float], Awaitable[None]]


class PeriodicSyncTrigger:
    """Fire ``run_if_due`` every ``interval_seconds``; failed runs never stop the alarm."""

    def __init__(
        self,
        orchestrator: BackgroundSyncOrchestrator,
        interval_seconds: float,
        *,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0.")
        self._orchestrator = orchestrator
        self._interval = interval_seconds
        self._sleep = sleep_fn
        self._task: asyncio.Task[int] | None = None

    @property
    def interval_seconds(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, *, max_cycles: int | None = None, run_on_start: bool = False) -> int:
        """Run alarm cycles until cancelled or ``max_cycles`` elapse; returns completed runs."""
        if max_cycles is not None and max_cycles < 0:
            raise ValueError("max_cycles must be >= 0.")
        completed = 0
        if run_on_start:
            completed += await self._tick()

        cycles = 0
        while max_cycles is None or cycles < max_cycles:
            await self._sleep(self._interval)
            cycles += 1
            logger.debug("Alarm '%s' fired (cycle %s)", ALARM_NAME, cycles)
            completed += await self._tick()
        return completed

    def start(self, *, run_on_start: bool = True) -> asyncio.Task[int]:
        if self.is_running:
            raise RuntimeError("Periodic sync trigger is already running.")
        self._task = asyncio.create_task(self.run(run_on_start=run_on_start), name=ALARM_NAME)
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _tick(self) -> int:
        try:
            outcome: SyncOutcome = await self._orchestrator.run_if_due()
        except ThreadRelayError as exc:
            logger.warning("Scheduled sync failed: %s", exc)
            return 0
        if not outcome.ran:
            logger.debug("Scheduled sync not run: %s", outcome.reason)
            return 0
        return 1
