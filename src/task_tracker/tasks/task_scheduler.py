# src/task_tracker/tasks/task_scheduler.py

from __future__ import annotations

"""
Timer scheduler.

A small polling loop that, every interval:
- samples the clock once,
- evaluates every running timer against that instant,
- expires the ones that ran out through TaskStore.expire_timer.

It performs no I/O itself; the store forwards the resulting mutations to the
SyncGateway exactly like user commands.
"""

import asyncio
import logging

from ..core.ports import Clock
from . import timer_engine
from .task_store import TaskStore

logger = logging.getLogger(__name__)


class TimerScheduler:
    """
    Explicit start()/stop() lifecycle, independent of any presentation layer.

    start() needs a running event loop; stop() cancels the loop task immediately so
    no ticking survives the session. tick() can be called directly for deterministic tests.
    """

    def __init__(
        self,
        store: TaskStore,
        *,
        clock: Clock | None = None,
        interval_seconds: float = 1.0,
    ) -> None:
        self._store = store
        self._clock = clock or store.clock
        self._interval = max(0.01, float(interval_seconds))
        self._runner: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    @property
    def interval_seconds(self) -> float:
        return self._interval

    def tick(self) -> list[str]:
        """
        One evaluation pass. Returns ids of tasks that transitioned to failed.

        Each task is handled on its own: a failure on one is logged and the rest still run.
        """
        now = self._clock.now()
        expired: list[str] = []

        try:
            candidates = self._store.running_tasks()
        except Exception:
            logger.exception("running_tasks failed")
            return expired

        for task in candidates:
            try:
                if timer_engine.evaluate(task, now) is task:
                    continue
                result = self._store.expire_timer(task.id, now)
                if result.applied:
                    expired.append(task.id)
                    logger.info("Timer expired task_id=%s duration=%s", task.id, task.timer_duration)
            except Exception:
                logger.exception("timer evaluation failed task_id=%s", task.id)

        return expired

    async def run(self) -> None:
        """Tick forever. To stop, cancel the coroutine/task (or call stop())."""
        logger.debug("Timer scheduler loop started interval=%.2fs", self._interval)
        while True:
            self.tick()
            await asyncio.sleep(self._interval)

    def start(self) -> None:
        if self.running:
            return
        loop = asyncio.get_running_loop()
        self._runner = loop.create_task(self.run(), name="task-timer-scheduler")
        logger.info("Timer scheduler started")

    def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is None:
            return
        if not runner.done():
            runner.cancel()
        logger.info("Timer scheduler stopped")

    async def aclose(self) -> None:
        """stop() and wait until the loop task has really finished."""
        runner = self._runner
        self.stop()
        if runner is None:
            return
        try:
            await runner
        except asyncio.CancelledError:
            pass
