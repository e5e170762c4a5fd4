"""Periodic alarm cycles over a scripted orchestrator."""

from __future__ import annotations

import asyncio

import pytest

from thread_relay.errors import DiscoveryFailure
from thread_relay.sync.orchestrator import SyncOutcome
from thread_relay.sync.trigger import ALARM_NAME, PeriodicSyncTrigger
from thread_relay.testing import SleepRecorder


class ScriptedOrchestrator:
    def __init__(self, *results: SyncOutcome | Exception) -> None:
        self.results = list(results)
        self.calls = 0

    async def run_if_due(self, force: bool = False) -> SyncOutcome:
        self.calls += 1
        result = self.results.pop(0) if self.results else SyncOutcome(ran=False, reason="fresh")
        if isinstance(result, Exception):
            raise result
        return result


@pytest.mark.asyncio
async def test_run_counts_completed_runs_and_survives_failures() -> None:
    sleeper = SleepRecorder()
    orchestrator = ScriptedOrchestrator(
        SyncOutcome(ran=True, reason="completed", model_count=2),
        DiscoveryFailure("menu vanished"),
        SyncOutcome(ran=False, reason="too_soon"),
        SyncOutcome(ran=True, reason="recently_refreshed", model_count=2),
    )
    trigger = PeriodicSyncTrigger(orchestrator, 1800, sleep_fn=sleeper)

    completed = await trigger.run(max_cycles=3, run_on_start=True)

    assert completed == 2
    assert orchestrator.calls == 4
    assert sleeper.calls == [1800.0, 1800.0, 1800.0]


@pytest.mark.asyncio
async def test_zero_cycles_without_start_run_does_nothing() -> None:
    orchestrator = ScriptedOrchestrator()
    assert await PeriodicSyncTrigger(orchestrator, 5, sleep_fn=SleepRecorder()).run(max_cycles=0) == 0
    assert orchestrator.calls == 0


def test_non_positive_interval_is_rejected() -> None:
    with pytest.raises(ValueError):
        PeriodicSyncTrigger(ScriptedOrchestrator(), 0)


@pytest.mark.asyncio
async def test_negative_cycles_are_rejected() -> None:
    trigger = PeriodicSyncTrigger(ScriptedOrchestrator(), 1, sleep_fn=SleepRecorder())
    with pytest.raises(ValueError):
        await trigger.run(max_cycles=-1)


@pytest.mark.asyncio
async def test_start_and_stop_manage_named_task() -> None:
    orchestrator = ScriptedOrchestrator()
    trigger = PeriodicSyncTrigger(orchestrator, 0.01)

    task = trigger.start()
    assert task.get_name() == ALARM_NAME
    assert trigger.is_running is True
    with pytest.raises(RuntimeError):
        trigger.start()

    await asyncio.sleep(0.05)
    await trigger.stop()

    assert trigger.is_running is False
    assert task.cancelled()
    assert orchestrator.calls >= 1
    await trigger.stop()
