# src/instance_sync/sync/scheduler.py

from __future__ import annotations

"""
Sync scheduler.

A fixed-period timer that:
- fires once after a short startup delay,
- then fires every `interval_seconds`, measured from scheduler start
  (not from the end of the previous run),
- runs at most one pipeline at a time: a tick that fires while a run is in
  flight is dropped, never queued.

To stop it, call request_stop() on the loop thread (or SchedulerBackgroundRunner.stop()).
"""

import asyncio
import contextlib
import logging
import threading
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

from .models import RunTrigger, TaskRun
from .pipeline import run_sync_once

if TYPE_CHECKING:
    from ..core.state import AppState

logger = logging.getLogger(__name__)

SYNC_INTERVAL_SECONDS = 15 * 60
STARTUP_DELAY_SECONDS = 5.0
SHUTDOWN_GRACE_SECONDS = 30.0

PipelineFn = Callable[..., Awaitable[TaskRun]]


class SchedulerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class SyncScheduler:
    def __init__(
        self,
        state: AppState,
        *,
        interval_seconds: float = SYNC_INTERVAL_SECONDS,
        initial_delay_seconds: float = STARTUP_DELAY_SECONDS,
        pipeline: PipelineFn = run_sync_once,
    ) -> None:
        self._app = state
        self._interval = max(0.01, float(interval_seconds))
        self._initial_delay = max(0.0, float(initial_delay_seconds))
        self._pipeline = pipeline

        # Single-slot guard: acquired without blocking by tick(), released when the run ends.
        self._guard = threading.Lock()
        self._stopped = False
        self._stop_event = asyncio.Event()

        self._timer_task: asyncio.Task[None] | None = None
        self._current: asyncio.Task[None] | None = None

        self.ticks_started = 0
        self.ticks_dropped = 0

    @property
    def state(self) -> SchedulerState:
        if self._stopped:
            return SchedulerState.STOPPED
        if self._guard.locked():
            return SchedulerState.RUNNING
        return SchedulerState.IDLE

    # ---- ticks ----

    def tick(self, trigger: RunTrigger = RunTrigger.INTERVAL) -> asyncio.Task[None] | None:
        """
        Start one pipeline run unless one is already in flight.

        Must be called on the scheduler's event loop. Returns the run task, or
        None if the tick was dropped.
        """
        if self._stopped:
            logger.debug("Tick ignored (trigger=%s): scheduler stopped", trigger.value)
            return None

        if not self._guard.acquire(blocking=False):
            self.ticks_dropped += 1
            logger.info("Tick dropped (trigger=%s): previous run still in progress", trigger.value)
            return None

        self.ticks_started += 1
        try:
            task = asyncio.get_running_loop().create_task(self._run(trigger))
        except BaseException:
            self._guard.release()
            raise
        self._current = task
        return task

    async def _run(self, trigger: RunTrigger) -> None:
        try:
            await self._pipeline(self._app, trigger=trigger)
        except Exception:
            # The pipeline reports its own failures; this only guards the timer.
            logger.exception("Sync pipeline raised (trigger=%s)", trigger.value)
        finally:
            self._guard.release()

    # ---- timer ----

    async def _sleep_until(self, deadline: float) -> bool:
        """Sleep until `deadline` (loop time). Returns True if a stop was requested."""
        loop = asyncio.get_running_loop()
        delay = max(0.0, deadline - loop.time())
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            return True
        except asyncio.TimeoutError:
            return self._stopped

    async def _timer_loop(self) -> None:
        loop = asyncio.get_running_loop()
        started_at = loop.time()

        if await self._sleep_until(started_at + self._initial_delay):
            return
        self.tick(RunTrigger.STARTUP)

        k = 1
        while not self._stopped:
            deadline = started_at + k * self._interval
            now = loop.time()
            if deadline <= now:
                # Missed slots (slow loop, or startup delay past the first slot) are skipped.
                k = int((now - started_at) // self._interval) + 1
                continue

            if await self._sleep_until(deadline):
                return
            self.tick(RunTrigger.INTERVAL)
            k += 1

    def start(self) -> None:
        if self._stopped:
            raise RuntimeError("scheduler is stopped and cannot be restarted")
        if self._timer_task is not None:
            return
        self._timer_task = asyncio.get_running_loop().create_task(self._timer_loop())
        logger.info(
            "Sync scheduler started (startup delay=%.1fs interval=%.0fs)",
            self._initial_delay,
            self._interval,
        )

    def request_stop(self) -> None:
        """Enter STOPPED: no further ticks fire. Does not interrupt a run in flight."""
        if not self._stopped:
            logger.info("Sync scheduler stopping.")
        self._stopped = True
        self._stop_event.set()

    async def stop(self, *, grace_seconds: float = SHUTDOWN_GRACE_SECONDS) -> bool:
        """
        Stop the timer and wait up to grace_seconds for an in-flight run.

        Returns False if the run did not finish in time.
        """
        self.request_stop()

        if self._timer_task is not None:
            self._timer_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer_task

        current = self._current
        if current is None or current.done():
            return True

        logger.info("Waiting up to %.1fs for the in-flight sync run...", grace_seconds)
        done, _ = await asyncio.wait({current}, timeout=max(0.0, grace_seconds))
        if done:
            return True

        logger.warning("In-flight sync run did not finish within %.1fs; abandoning it.", grace_seconds)
        current.cancel()
        return False

    async def serve(self, *, grace_seconds: float = SHUTDOWN_GRACE_SECONDS) -> None:
        """Run until request_stop(), then shut down with a bounded grace period."""
        self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.stop(grace_seconds=grace_seconds)
            logger.info("Sync scheduler stopped.")


@dataclass
class SchedulerBackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    scheduler: SyncScheduler

    def trigger_now(self) -> None:
        """Request a manual run. Dropped like any other tick if a run is in flight."""
        try:
            self.loop.call_soon_threadsafe(self.scheduler.tick, RunTrigger.MANUAL)
        except RuntimeError:
            logger.debug("Scheduler loop is closed; manual trigger ignored.")

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.scheduler.request_stop)
        except RuntimeError:
            logger.debug("Failed to signal scheduler stop.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_scheduler_in_background(
    state: AppState,
    *,
    interval_seconds: float = SYNC_INTERVAL_SECONDS,
    initial_delay_seconds: float = STARTUP_DELAY_SECONDS,
    grace_seconds: float = SHUTDOWN_GRACE_SECONDS,
) -> SchedulerBackgroundRunner | None:
    """
    Start the sync scheduler in a background thread with its own event loop,
    so the console (or any other presentation layer) stays responsive.
    """
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        scheduler = SyncScheduler(
            state,
            interval_seconds=interval_seconds,
            initial_delay_seconds=initial_delay_seconds,
        )

        holder["loop"] = loop
        holder["scheduler"] = scheduler
        ready.set()

        try:
            loop.run_until_complete(scheduler.serve(grace_seconds=grace_seconds))
        except Exception:
            logger.exception("Scheduler thread crashed.")
        finally:
            with contextlib.suppress(Exception):
                loop.run_until_complete(loop.shutdown_asyncgens())
            with contextlib.suppress(Exception):
                loop.close()

    t = threading.Thread(target=runner, name="sync-scheduler", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    scheduler = holder.get("scheduler")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(scheduler, SyncScheduler):
        logger.error("Scheduler thread did not initialize properly.")
        return None

    bg = SchedulerBackgroundRunner(thread=t, loop=loop, scheduler=scheduler)
    state.scheduler = bg
    logger.info("Scheduler background thread started.")
    return bg
