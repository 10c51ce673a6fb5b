# tests/test_runtime.py

from __future__ import annotations

import asyncio

import pytest

from task_tracker.bootstrap import create_runtime
from task_tracker.core.session import SessionEvent, SessionEventKind
from task_tracker.sync.changes import ChangeBroadcaster
from task_tracker.tasks.task_models import TimerStatus

from .fakes import FakeRemoteTable, ManualClock, task_row


@pytest.mark.asyncio
async def test_session_events_drive_load_scheduler_and_clear(settings, clock: ManualClock) -> None:
    feed = ChangeBroadcaster()
    table = FakeRemoteTable(rows=[task_row("1", "mine"), task_row("2", "theirs", user_id="u2")], feed=feed)
    runtime = create_runtime(settings, table=table, feed=feed, clock=clock)

    await runtime.handle_session_event(SessionEvent(SessionEventKind.SIGNED_IN, "u1"))
    assert runtime.scheduler.running
    assert [t.id for t in runtime.store.list_tasks()] == ["1"]

    # Duplicate sign-in (token refresh) keeps the session.
    session = runtime.gateway.session
    await runtime.handle_session_event(SessionEvent(SessionEventKind.SIGNED_IN, "u1"))
    assert runtime.gateway.session is session

    await runtime.handle_session_event(SessionEvent(SessionEventKind.SIGNED_OUT))
    assert not runtime.scheduler.running
    assert runtime.gateway.session is None
    assert len(runtime.store) == 0

    await runtime.handle_session_event(SessionEvent(SessionEventKind.SIGNED_IN, "u2"))
    assert [t.id for t in runtime.store.list_tasks()] == ["2"]

    await runtime.shutdown()
    assert not runtime.scheduler.running


@pytest.mark.asyncio
async def test_scheduler_expiry_is_persisted(settings, clock: ManualClock) -> None:
    feed = ChangeBroadcaster()
    table = FakeRemoteTable(feed=feed)
    runtime = create_runtime(settings, table=table, feed=feed, clock=clock)
    await runtime.start_session("u1")

    created = runtime.store.create({"title": "focus", "timer_duration": 1})
    await created.remote
    runtime.store.start_timer("42")
    await runtime.gateway.drain()

    clock.advance(minutes=1)
    for _ in range(100):
        if runtime.store.get("42").timer_status == TimerStatus.FAILED:
            break
        await asyncio.sleep(0.01)
    await runtime.gateway.drain()

    assert runtime.store.get("42").timer_status == TimerStatus.FAILED
    assert table.rows["42"]["timer_status"] == "failed"
    assert table.rows["42"]["completed"] is False

    await runtime.shutdown()


@pytest.mark.asyncio
async def test_sign_in_without_user_is_ignored(settings, clock: ManualClock) -> None:
    runtime = create_runtime(settings, table=FakeRemoteTable(), feed=ChangeBroadcaster(), clock=clock)
    await runtime.handle_session_event(SessionEvent(SessionEventKind.SIGNED_IN))
    assert runtime.gateway.session is None
    assert not runtime.scheduler.running
