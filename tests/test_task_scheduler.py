# tests/test_task_scheduler.py

from __future__ import annotations

import asyncio

import pytest

from task_tracker.tasks.task_models import Task, TimerStatus
from task_tracker.tasks.task_scheduler import TimerScheduler
from task_tracker.tasks.task_store import Mutation, MutationOp, TaskStore

from .fakes import ManualClock


class RecordingSink:
    def __init__(self) -> None:
        self.mutations: list[Mutation] = []

    def submit(self, mutation: Mutation) -> None:
        self.mutations.append(mutation)


def _started(store: TaskStore, minutes: int, title: str = "focus") -> Task:
    task = store.create({"title": title, "timer_duration": minutes}).task
    assert task is not None
    started = store.start_timer(task.id).task
    assert started is not None
    return started


def test_tick_expires_at_full_minutes_only(store: TaskStore, clock: ManualClock) -> None:
    sink = RecordingSink()
    task = _started(store, minutes=5)
    store.attach_sink(sink)
    scheduler = TimerScheduler(store)

    clock.advance(seconds=299)
    assert scheduler.tick() == []
    assert store.get(task.id).timer_status == TimerStatus.RUNNING
    assert sink.mutations == []

    clock.advance(seconds=1)
    assert scheduler.tick() == [task.id]
    failed = store.get(task.id)
    assert failed.timer_status == TimerStatus.FAILED
    assert failed.completed is False

    assert len(sink.mutations) == 1
    mutation = sink.mutations[0]
    assert mutation.op == MutationOp.UPDATE
    assert mutation.fields == {"timer_status": TimerStatus.FAILED}

    # Terminal: later ticks leave it alone.
    clock.advance(minutes=30)
    assert scheduler.tick() == []
    assert len(sink.mutations) == 1


def test_tick_ignores_paused_and_not_started(store: TaskStore, clock: ManualClock) -> None:
    paused = _started(store, minutes=1, title="paused")
    store.pause_timer(paused.id)
    idle = store.create({"title": "idle", "timer_duration": 1}).task
    scheduler = TimerScheduler(store)

    clock.advance(minutes=10)
    assert scheduler.tick() == []
    assert store.get(paused.id).timer_status == TimerStatus.PAUSED
    assert store.get(idle.id).timer_status == TimerStatus.NOT_STARTED


def test_resumed_timer_gets_a_fresh_window(store: TaskStore, clock: ManualClock) -> None:
    task = _started(store, minutes=10)
    scheduler = TimerScheduler(store)

    clock.advance(minutes=3)
    store.pause_timer(task.id)
    store.start_timer(task.id)

    clock.advance(minutes=7)
    assert scheduler.tick() == []
    assert store.get(task.id).timer_status == TimerStatus.RUNNING

    clock.advance(minutes=3)
    assert scheduler.tick() == [task.id]
    assert store.get(task.id).timer_status == TimerStatus.FAILED


def test_tick_uses_one_sample_for_all_tasks(store: TaskStore, clock: ManualClock) -> None:
    a = _started(store, minutes=1, title="a")
    b = _started(store, minutes=2, title="b")
    scheduler = TimerScheduler(store)

    clock.advance(minutes=2)
    assert sorted(scheduler.tick()) == sorted([a.id, b.id])


def test_failure_on_one_task_does_not_stop_the_others(
    store: TaskStore, clock: ManualClock, monkeypatch: pytest.MonkeyPatch
) -> None:
    bad = _started(store, minutes=1, title="bad")
    good = _started(store, minutes=1, title="good")
    scheduler = TimerScheduler(store)

    original = store.expire_timer

    def flaky(task_id, now=None):
        if task_id == bad.id:
            raise RuntimeError("boom")
        return original(task_id, now)

    monkeypatch.setattr(store, "expire_timer", flaky)

    clock.advance(minutes=1)
    assert scheduler.tick() == [good.id]
    assert store.get(good.id).timer_status == TimerStatus.FAILED
    assert store.get(bad.id).timer_status == TimerStatus.RUNNING


@pytest.mark.asyncio
async def test_run_loop_expires_and_stops(store: TaskStore, clock: ManualClock) -> None:
    task = _started(store, minutes=1)
    scheduler = TimerScheduler(store, interval_seconds=0.01)

    scheduler.start()
    scheduler.start()  # idempotent
    assert scheduler.running

    await asyncio.sleep(0.03)
    assert store.get(task.id).timer_status == TimerStatus.RUNNING

    clock.advance(minutes=1)
    for _ in range(50):
        if store.get(task.id).timer_status == TimerStatus.FAILED:
            break
        await asyncio.sleep(0.01)
    assert store.get(task.id).timer_status == TimerStatus.FAILED

    await scheduler.aclose()
    assert not scheduler.running


@pytest.mark.asyncio
async def test_stopped_scheduler_no_longer_ticks(store: TaskStore, clock: ManualClock) -> None:
    task = _started(store, minutes=1)
    scheduler = TimerScheduler(store, interval_seconds=0.01)

    scheduler.start()
    await asyncio.sleep(0.02)
    scheduler.stop()
    assert not scheduler.running

    clock.advance(minutes=5)
    await asyncio.sleep(0.05)
    assert store.get(task.id).timer_status == TimerStatus.RUNNING

    scheduler.stop()  # second stop is harmless


def test_start_requires_running_loop(store: TaskStore) -> None:
    scheduler = TimerScheduler(store)
    with pytest.raises(RuntimeError):
        scheduler.start()
