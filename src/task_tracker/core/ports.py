# src/task_tracker/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps the remote store / realtime feed / clock swappable and makes testing easier.
"""

from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

Row = dict[str, Any]
# One record of the remote `tasks` (or `categories`) table, snake_case columns.

Unsubscribe = Callable[[], None]


class Clock(Protocol):
    """Current time source (timezone-aware). Injected everywhere time matters."""

    def now(self) -> datetime: ...


class RemoteTaskTable(Protocol):
    """
    Persistence collaborator: request/response access to the remote task table.

    Implementations raise RemoteOperationError for rejected or unreachable operations.
    """

    def select_tasks(self, *, user_id: str) -> Awaitable[list[Row]]: ...

    def select_categories(self, *, user_id: str) -> Awaitable[list[Row]]: ...

    def insert(self, row: Row) -> Awaitable[Row]: ...

    def update(self, task_id: str, fields: Row) -> Awaitable[Row | None]: ...

    def delete(self, task_id: str) -> Awaitable[None]: ...


class ChangeFeed(Protocol):
    """
    Optional live-update feed of the remote table.

    Callbacks receive RemoteChange objects and are invoked on the event loop thread.
    """

    def subscribe(self, callback: Callable[[Any], None]) -> Unsubscribe: ...


class MutationSink(Protocol):
    """Where TaskStore forwards its optimistic mutations (the SyncGateway)."""

    def submit(self, mutation: Any) -> Any: ...
