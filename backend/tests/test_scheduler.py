from __future__ import annotations

import asyncio

import pytest

from chat_memory.memory.corruption_guard import CorruptionGuard
from chat_memory.services.scheduler import (
    CleanupScheduler,
    CorruptionSweepScheduler,
    PeriodicTask,
)

# 0.001 minutes is 60ms.
FAST = 0.001


class CountingTask(PeriodicTask):
    name = "counting"

    def __init__(self, *args, fail: bool = False, delay: float = 0, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.fail = fail
        self.delay = delay
        self.calls = 0

    async def _execute(self) -> None:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise RuntimeError("boom")


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("Timed out waiting for scheduler")
        await asyncio.sleep(0.01)


@pytest.mark.anyio
async def test_start_runs_immediately_and_repeats(events):
    task = CountingTask(FAST, events=events)
    assert await task.start() is True
    try:
        await wait_until(lambda: task.calls >= 3)
        assert task.is_running
    finally:
        await task.stop()
    assert not task.is_running
    assert task.status().runs >= 3


@pytest.mark.anyio
async def test_start_is_noop_when_running(events):
    task = CountingTask(60, events=events)
    assert await task.start() is True
    assert await task.start() is False
    await task.stop()
    await task.stop()
    assert events.events(operation="counting", level="warning")


@pytest.mark.anyio
async def test_delayed_start_waits_one_interval(events):
    task = CountingTask(60, run_immediately=False, events=events)
    await task.start()
    await asyncio.sleep(0.05)
    assert task.calls == 0
    await task.stop()


@pytest.mark.anyio
async def test_failing_run_is_logged_and_schedule_continues(events):
    task = CountingTask(FAST, fail=True, events=events)
    await task.start()
    try:
        await wait_until(lambda: task.calls >= 2)
    finally:
        await task.stop()
    status = task.status()
    assert status.failures >= 2
    assert status.runs == 0
    assert events.events(error_type="scheduler")


@pytest.mark.anyio
async def test_overlapping_run_is_skipped(events):
    task = CountingTask(60, delay=0.1, events=events)
    first = asyncio.create_task(task.run_once())
    await asyncio.sleep(0.01)
    assert await task.run_once() is False
    assert await first is True
    assert task.calls == 1


@pytest.mark.anyio
async def test_set_interval_restarts_running_schedule(events):
    task = CountingTask(60, events=events)
    await task.start()
    await wait_until(lambda: task.calls == 1)

    await task.set_interval(FAST)
    try:
        assert task.interval_minutes == FAST
        await wait_until(lambda: task.calls >= 4)
    finally:
        await task.stop()

    idle = CountingTask(60, events=events)
    await idle.set_interval(5)
    assert idle.interval_minutes == 5
    assert not idle.is_running


@pytest.mark.anyio
async def test_cleanup_scheduler_evicts_idle_sessions(manager, store, clock, events):
    store.get_or_create("idle")
    clock.advance(hours=25)
    scheduler = CleanupScheduler(manager, 60, events=events)

    assert await scheduler.run_once() is True
    assert not store.has("idle")


@pytest.mark.anyio
async def test_sweep_scheduler_runs_guard(store, events, clock):
    guard = CorruptionGuard(store, events=events, clock=clock)
    record = store.get_or_create("s1")
    record.messages = "broken"
    store._records["s1"] = record
    scheduler = CorruptionSweepScheduler(guard, 120, events=events)

    assert await scheduler.run_once() is True
    assert store.get("s1").messages == []
    assert scheduler.status().last_run_at is not None


def test_periodic_task_requires_an_execute_hook():
    with pytest.raises(TypeError):
        PeriodicTask(FAST)
