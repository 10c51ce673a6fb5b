# src/task_tracker/core/state.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from ..sync.gateway import SyncGateway
from ..tasks.task_scheduler import TimerScheduler
from ..tasks.task_store import TaskStore
from .ports import Clock
from .session import Session, SessionEvent, SessionEventKind

logger = logging.getLogger(__name__)


@dataclass
class TrackerRuntime:
    """
    Everything one signed-in client needs, wired together (see bootstrap.create_runtime).

    The presentation layer holds one of these and talks to `store` for reads and
    commands; session events from the auth layer go to handle_session_event.
    """

    # Store Settings on the runtime for easy access in other modules later.
    settings: Any

    clock: Clock
    store: TaskStore
    gateway: SyncGateway
    scheduler: TimerScheduler
    table: Any = None

    async def start_session(self, user_id: str) -> Session:
        session = await self.gateway.start_session(user_id)
        # The session may have ended while the initial load was in flight.
        if self.gateway.session is session:
            self.scheduler.start()
        return session

    def end_session(self) -> None:
        self.scheduler.stop()
        self.gateway.end_session()

    async def handle_session_event(self, event: SessionEvent) -> None:
        if event.kind == SessionEventKind.SIGNED_IN:
            if not event.user_id:
                logger.warning("signed_in event without user id ignored")
                return
            current = self.gateway.session
            if current is not None and current.user_id == event.user_id:
                # Token refresh / duplicate event from another tab: keep the session.
                return
            await self.start_session(event.user_id)
        elif event.kind == SessionEventKind.SIGNED_OUT:
            self.end_session()

    async def shutdown(self) -> None:
        """Best-effort shutdown (no exceptions should escape)."""
        try:
            await self.scheduler.aclose()
        except Exception:
            logger.exception("scheduler close failed")

        try:
            self.end_session()
            await self.gateway.drain()
        except Exception:
            logger.exception("gateway drain failed")

        close = getattr(self.table, "aclose", None)
        if callable(close):
            try:
                await close()
            except Exception:
                logger.debug("remote table close failed", exc_info=True)
