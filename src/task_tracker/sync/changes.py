# src/task_tracker/sync/changes.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Callable

from ..core.ports import Row, Unsubscribe

logger = logging.getLogger(__name__)


class RemoteChangeKind(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class RemoteChange:
    """
    One change notification from the remote table.

    insert/update carry the full record; delete carries only the id.
    """

    kind: RemoteChangeKind
    task_id: str
    record: Row | None = None

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> RemoteChange:
        """
        Parse a realtime payload of the shape
        {"eventType": "INSERT"|"UPDATE"|"DELETE", "new": {...}, "old": {...}}.
        """
        kind = RemoteChangeKind(str(payload.get("eventType") or payload.get("type") or "").lower())
        new = payload.get("new") or payload.get("record") or None
        old = payload.get("old") or payload.get("old_record") or {}
        if kind == RemoteChangeKind.DELETE:
            return cls(kind=kind, task_id=str(old.get("id")), record=None)
        if not new or new.get("id") is None:
            raise ValueError("change payload without record id")
        return cls(kind=kind, task_id=str(new["id"]), record=dict(new))


class ChangeBroadcaster:
    """
    Minimal ChangeFeed: fan out RemoteChange objects to subscribers.

    A failing subscriber is logged and does not prevent delivery to the others.
    """

    def __init__(self) -> None:
        self._subscribers: list[Callable[[RemoteChange], None]] = []

    def subscribe(self, callback: Callable[[RemoteChange], None]) -> Unsubscribe:
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            try:
                self._subscribers.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, change: RemoteChange) -> None:
        for cb in list(self._subscribers):
            try:
                cb(change)
            except Exception:
                logger.exception("change subscriber failed kind=%s task_id=%s", change.kind.value, change.task_id)
