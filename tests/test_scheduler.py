"""Tests for PeriodicTask."""

import asyncio

import pytest

from dokan_sync.scheduler import PeriodicTask


@pytest.mark.asyncio
async def test_runs_repeatedly_until_stopped():
    calls = []

    async def tick():
        calls.append(1)

    task = PeriodicTask(tick, interval=0.01)
    task.start()
    await asyncio.sleep(0.1)
    await task.stop()

    assert len(calls) >= 2
    assert not task.is_running
    stopped_at = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == stopped_at


@pytest.mark.asyncio
async def test_failing_callback_keeps_schedule(caplog):
    calls = []

    async def flaky():
        calls.append(1)
        raise RuntimeError("remote down")

    task = PeriodicTask(flaky, interval=0.01, name="flaky-task")
    task.start()
    await asyncio.sleep(0.1)
    await task.stop()

    assert len(calls) >= 2
    assert "flaky-task failed: remote down" in caplog.text


@pytest.mark.asyncio
async def test_run_immediately():
    calls = []

    async def tick():
        calls.append(1)

    task = PeriodicTask(tick, interval=60, run_immediately=True)
    task.start()
    await asyncio.sleep(0.02)
    await task.stop()

    assert calls == [1]


@pytest.mark.asyncio
async def test_start_twice_keeps_one_loop():
    async def tick():
        pass

    task = PeriodicTask(tick, interval=60)
    task.start()
    first = task._task
    task.start()
    assert task._task is first
    await task.stop()


@pytest.mark.asyncio
async def test_stop_without_start():
    async def tick():
        pass

    await PeriodicTask(tick, interval=1).stop()


def test_interval_must_be_positive():
    async def tick():
        pass

    with pytest.raises(ValueError):
        PeriodicTask(tick, interval=0)
