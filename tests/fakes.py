# tests/fakes.py

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

from task_tracker.core.errors import RemoteOperationError
from task_tracker.core.ports import Row
from task_tracker.sync.changes import ChangeBroadcaster, RemoteChange, RemoteChangeKind

T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class ManualClock:
    """
    Deterministic Clock for unit tests.

    Time only moves when the test says so.
    """

    def __init__(self, start: datetime = T0) -> None:
        self._now = start

    def now(self) -> datetime:
        return self._now

    def advance(self, *, seconds: float = 0, minutes: float = 0, milliseconds: float = 0) -> datetime:
        self._now = self._now + timedelta(seconds=seconds, minutes=minutes, milliseconds=milliseconds)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when


class FakeRemoteTable:
    """
    In-memory RemoteTaskTable used for gateway unit tests.

    - calls: every operation in arrival order, for assertions
    - fail: op names that raise RemoteOperationError
    - hold: op name -> asyncio.Event; the op blocks until the event is set
    - feed: optional ChangeBroadcaster that receives a RemoteChange for each write
      (published before the call returns, like a fast realtime channel)
    """

    def __init__(
        self,
        rows: list[Row] | None = None,
        categories: list[Row] | None = None,
        *,
        feed: ChangeBroadcaster | None = None,
        first_id: int = 42,
    ) -> None:
        self.rows: dict[str, Row] = {str(r["id"]): dict(r, id=str(r["id"])) for r in (rows or [])}
        self.categories: list[Row] = [dict(c) for c in (categories or [])]
        self.feed = feed
        self.calls: list[tuple[str, Any]] = []
        self.fail: set[str] = set()
        self.hold: dict[str, asyncio.Event] = {}
        self._next_id = first_id

    def calls_of(self, op: str) -> list[Any]:
        return [arg for name, arg in self.calls if name == op]

    async def _gate(self, op: str, task_id: str | None = None) -> None:
        ev = self.hold.get(op)
        if ev is not None:
            await ev.wait()
        if op in self.fail:
            raise RemoteOperationError("remote unavailable", op=op, task_id=task_id)

    def _publish(self, change: RemoteChange) -> None:
        if self.feed is not None:
            self.feed.publish(change)

    async def select_tasks(self, *, user_id: str) -> list[Row]:
        self.calls.append(("select_tasks", user_id))
        await self._gate("select_tasks")
        own = [dict(r) for r in self.rows.values() if r.get("user_id") == user_id]
        own.sort(key=lambda r: r.get("created_at") or "", reverse=True)
        return own

    async def select_categories(self, *, user_id: str) -> list[Row]:
        self.calls.append(("select_categories", user_id))
        await self._gate("select_categories")
        return [dict(c) for c in self.categories if c.get("user_id", user_id) == user_id]

    async def insert(self, row: Row) -> Row:
        self.calls.append(("insert", dict(row)))
        await self._gate("insert")
        task_id = str(self._next_id)
        self._next_id += 1
        stored = dict(row, id=task_id)
        self.rows[task_id] = stored
        self._publish(RemoteChange(RemoteChangeKind.INSERT, task_id, dict(stored)))
        return dict(stored)

    async def update(self, task_id: str, fields: Row) -> Row | None:
        self.calls.append(("update", (task_id, dict(fields))))
        await self._gate("update", task_id)
        current = self.rows.get(task_id)
        if current is None:
            return None
        current.update(fields)
        self._publish(RemoteChange(RemoteChangeKind.UPDATE, task_id, dict(current)))
        return dict(current)

    async def delete(self, task_id: str) -> None:
        self.calls.append(("delete", task_id))
        await self._gate("delete", task_id)
        if self.rows.pop(task_id, None) is not None:
            self._publish(RemoteChange(RemoteChangeKind.DELETE, task_id))


def task_row(task_id: str, title: str, *, user_id: str = "u1", created_at: str = "2025-01-01T10:00:00+00:00", **extra: Any) -> Row:
    row: Row = {
        "id": task_id,
        "title": title,
        "description": "",
        "category": "",
        "priority": "medium",
        "due_date": None,
        "completed": False,
        "timer_duration": None,
        "timer_started_at": None,
        "timer_status": None,
        "created_at": created_at,
        "user_id": user_id,
    }
    row.update(extra)
    return row
