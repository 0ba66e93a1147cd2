# tests/test_scheduler.py

from __future__ import annotations

import asyncio
from types import SimpleNamespace

import pytest

from instance_sync.errors import FetchError, FetchErrorKind
from instance_sync.sync.models import RunTrigger
from instance_sync.sync.scheduler import SchedulerState, SyncScheduler, start_scheduler_in_background

from .fakes import BlockingPipeline, CountingPipeline, TimedPipeline, rec


@pytest.mark.asyncio
async def test_tick_while_running_is_dropped_not_queued() -> None:
    pipeline = BlockingPipeline()
    sched = SyncScheduler(SimpleNamespace(), pipeline=pipeline)

    first = sched.tick(RunTrigger.STARTUP)
    assert first is not None
    await asyncio.sleep(0)
    assert sched.state == SchedulerState.RUNNING

    assert sched.tick() is None
    assert sched.tick() is None
    assert sched.ticks_dropped == 2

    pipeline.release.set()
    await first
    assert sched.state == SchedulerState.IDLE

    # Nothing was queued behind the first run.
    await asyncio.sleep(0.01)
    assert pipeline.calls == [RunTrigger.STARTUP]
    assert pipeline.max_active == 1

    # The next tick after completion runs normally.
    second = sched.tick()
    assert second is not None
    await second
    assert pipeline.calls == [RunTrigger.STARTUP, RunTrigger.INTERVAL]


@pytest.mark.asyncio
async def test_timer_fires_startup_then_interval() -> None:
    pipeline = CountingPipeline()
    sched = SyncScheduler(
        SimpleNamespace(), interval_seconds=0.1, initial_delay_seconds=0.2, pipeline=pipeline
    )

    sched.start()
    await asyncio.sleep(0.05)
    assert pipeline.calls == []

    await asyncio.sleep(0.4)
    await sched.stop(grace_seconds=0.5)

    assert pipeline.calls[0] == RunTrigger.STARTUP
    assert RunTrigger.INTERVAL in pipeline.calls
    assert 2 <= len(pipeline.calls) <= 5


@pytest.mark.asyncio
async def test_slow_run_drops_timer_ticks() -> None:
    pipeline = BlockingPipeline()
    sched = SyncScheduler(
        SimpleNamespace(), interval_seconds=0.02, initial_delay_seconds=0.0, pipeline=pipeline
    )

    sched.start()
    await asyncio.sleep(0.15)

    assert len(pipeline.calls) == 1
    assert sched.ticks_dropped >= 2
    assert pipeline.max_active == 1

    pipeline.release.set()
    assert await sched.stop(grace_seconds=0.5)


@pytest.mark.asyncio
async def test_cadence_stays_on_start_grid_after_slow_run() -> None:
    # Slots at 0.2 and 0.4 fall inside the 0.5s first run; the next run belongs to 0.6.
    pipeline = TimedPipeline(first_run_seconds=0.5)
    sched = SyncScheduler(
        SimpleNamespace(), interval_seconds=0.2, initial_delay_seconds=0.0, pipeline=pipeline
    )

    t0 = asyncio.get_running_loop().time()
    sched.start()
    await asyncio.sleep(0.9)
    await sched.stop(grace_seconds=0.5)

    offsets = [round(ts - t0, 3) for _, ts in pipeline.starts]
    triggers = [trigger for trigger, _ in pipeline.starts]

    assert triggers == [RunTrigger.STARTUP, RunTrigger.INTERVAL, RunTrigger.INTERVAL]
    assert sched.ticks_dropped == 2
    # On the grid: not "end of slow run + interval" (0.7), not replayed at 0.5.
    assert offsets[1] == pytest.approx(0.6, abs=0.05)
    assert offsets[2] == pytest.approx(0.8, abs=0.05)


@pytest.mark.asyncio
async def test_stopped_is_terminal() -> None:
    pipeline = CountingPipeline()
    sched = SyncScheduler(
        SimpleNamespace(), interval_seconds=0.02, initial_delay_seconds=0.0, pipeline=pipeline
    )

    sched.start()
    await asyncio.sleep(0.05)
    await sched.stop(grace_seconds=0.5)
    count = len(pipeline.calls)

    await asyncio.sleep(0.08)
    assert len(pipeline.calls) == count
    assert sched.state == SchedulerState.STOPPED
    assert sched.tick() is None
    with pytest.raises(RuntimeError):
        sched.start()


@pytest.mark.asyncio
async def test_stop_waits_for_in_flight_run() -> None:
    pipeline = BlockingPipeline()
    sched = SyncScheduler(SimpleNamespace(), pipeline=pipeline)

    sched.tick()
    await asyncio.sleep(0)

    async def finish_soon() -> None:
        await asyncio.sleep(0.03)
        pipeline.release.set()

    helper = asyncio.create_task(finish_soon())
    assert await sched.stop(grace_seconds=1.0) is True
    assert pipeline.finished == 1
    await helper


@pytest.mark.asyncio
async def test_stop_gives_up_after_grace() -> None:
    pipeline = BlockingPipeline()
    sched = SyncScheduler(SimpleNamespace(), pipeline=pipeline)

    sched.tick()
    await asyncio.sleep(0)

    assert await sched.stop(grace_seconds=0.02) is False
    assert pipeline.finished == 0


@pytest.mark.asyncio
async def test_transient_error_then_next_tick_still_runs(state, fetcher) -> None:
    fetcher.results = [
        FetchError("connection refused", kind=FetchErrorKind.TRANSIENT),
        [rec("A")],
    ]
    sched = SyncScheduler(state, interval_seconds=0.05, initial_delay_seconds=0.0)

    sched.start()
    await asyncio.sleep(0.08)
    await sched.stop(grace_seconds=0.5)

    events = state.events.drain()
    assert events[0]["type"] == "error"
    assert events[0]["error"]["kind"] == "transient"
    assert events[1]["type"] == "changeSet"
    assert events[1]["changeSet"]["added"] == ["A"]
    assert sched.ticks_started >= 2


def test_background_runner_syncs_and_stops(state, fetcher) -> None:
    fetcher.results = [[rec("A")]]

    runner = start_scheduler_in_background(
        state, interval_seconds=60.0, initial_delay_seconds=0.0, grace_seconds=1.0
    )
    assert runner is not None
    assert state.scheduler is runner

    payload = state.events.get(timeout=3.0)
    assert payload is not None
    assert payload["type"] == "changeSet"
    assert payload["changeSet"]["added"] == ["A"]

    runner.stop()
    runner.join(timeout=3.0)
    assert not runner.thread.is_alive()
    assert runner.scheduler.state == SchedulerState.STOPPED
