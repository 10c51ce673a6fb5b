# src/task_tracker/bootstrap.py

"""
Composition root.

- loads settings once (or takes them injected),
- ensures the local data directory exists when the SQLite backend is used,
- wires concrete implementations (clock, remote table, change feed) into a TrackerRuntime.
"""

from __future__ import annotations

import logging

from .config import BACKEND_REST, get_settings
from .core.clock import SystemClock
from .core.ports import ChangeFeed, Clock, RemoteTaskTable
from .core.state import TrackerRuntime
from .sync.gateway import SyncGateway
from .sync.rest_table import RestTaskTable
from .sync.sqlite_table import SqliteTaskTable
from .tasks.task_scheduler import TimerScheduler
from .tasks.task_store import TaskStore

logger = logging.getLogger(__name__)


def _build_table(settings) -> RemoteTaskTable:
    if settings.backend == BACKEND_REST:
        return RestTaskTable(
            settings.rest_url,
            api_key=settings.rest_api_key,
            timeout_seconds=settings.rest_timeout_seconds,
        )

    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    return SqliteTaskTable(settings.tasks_db_path)


def create_runtime(
    settings=None,
    *,
    table: RemoteTaskTable | None = None,
    feed: ChangeFeed | None = None,
    clock: Clock | None = None,
) -> TrackerRuntime:
    """
    Create a TrackerRuntime from the provided settings.

    Keeping settings/table/clock injectable makes the runtime easy to test and avoids
    hidden global config reads. If settings is None, falls back to get_settings().
    When no feed is given and the table can publish changes itself (SQLite), it is
    used as the feed.
    """
    if settings is None:
        settings = get_settings()

    if table is None:
        table = _build_table(settings)
    if feed is None and callable(getattr(table, "subscribe", None)):
        feed = table  # type: ignore[assignment]

    clock = clock or SystemClock()
    store = TaskStore(clock=clock, placeholder_prefix=settings.placeholder_prefix)
    gateway = SyncGateway(store, table, feed=feed)
    scheduler = TimerScheduler(store, clock=clock, interval_seconds=settings.tick_interval_seconds)

    logger.info(
        "%s runtime ready backend=%s tick=%.2fs",
        getattr(settings, "app_name", "task-tracker"),
        getattr(settings, "backend", "custom"),
        scheduler.interval_seconds,
    )
    return TrackerRuntime(
        settings=settings,
        clock=clock,
        store=store,
        gateway=gateway,
        scheduler=scheduler,
        table=table,
    )
