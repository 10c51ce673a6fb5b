# tests/conftest.py

from __future__ import annotations

from types import SimpleNamespace

import pytest

from task_tracker.sync.changes import ChangeBroadcaster
from task_tracker.sync.gateway import SyncGateway
from task_tracker.tasks.task_store import TaskStore

from .fakes import FakeRemoteTable, ManualClock


@pytest.fixture()
def settings(tmp_path) -> SimpleNamespace:
    """
    Minimal settings object compatible with create_runtime.

    We intentionally use a SimpleNamespace rather than reading the environment,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        backend="sqlite",
        tasks_db_path=tmp_path / "tasks.sqlite3",
        tick_interval_seconds=0.01,
        placeholder_prefix="temp-",
    )


@pytest.fixture()
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture()
def store(clock: ManualClock) -> TaskStore:
    return TaskStore(clock=clock)


@pytest.fixture()
def feed() -> ChangeBroadcaster:
    return ChangeBroadcaster()


@pytest.fixture()
def table(feed: ChangeBroadcaster) -> FakeRemoteTable:
    return FakeRemoteTable(feed=feed)


@pytest.fixture()
def gateway(store: TaskStore, table: FakeRemoteTable, feed: ChangeBroadcaster) -> SyncGateway:
    return SyncGateway(store, table, feed=feed)
