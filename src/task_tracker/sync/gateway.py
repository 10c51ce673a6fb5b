# src/task_tracker/sync/gateway.py

from __future__ import annotations

"""
SyncGateway: the seam between TaskStore and the remote task table.

Outbound: TaskStore forwards every optimistic Mutation here (submit); each one
becomes an asyncio task that performs the remote write. Results are never used
to roll back local state; failures are logged and reported to error listeners.

Inbound: the initial load of a session, and realtime RemoteChange events,
merged into the store with last-write-wins per task.

Placeholder ids:
- all remote work for one placeholder id is serialized (each op awaits the previous one)
- after a successful insert the permanent id is remembered and later ops target it
- if no insert has succeeded yet, an update is sent as an insert of the current task
  (the first successful write of an unsaved task is its creation) and a delete
  sends nothing

Session guard: every op captures the Session it was issued under. If the session
changed by the time the remote call returns, the result is discarded.
"""

import asyncio
import logging
from typing import Any, Callable

from ..core.errors import RemoteOperationError, StaleSessionError
from ..core.ports import ChangeFeed, RemoteTaskTable, Unsubscribe
from ..core.session import Session
from ..tasks.task_models import (
    EDITABLE_FIELDS,
    Task,
    category_from_row,
    fields_to_row,
    task_from_row,
    task_to_row,
)
from ..tasks.task_store import Mutation, MutationOp, TaskStore
from .changes import RemoteChange, RemoteChangeKind

logger = logging.getLogger(__name__)

ErrorListener = Callable[[RemoteOperationError], None]

_FULL_UPDATE_FIELDS = (*sorted(EDITABLE_FIELDS), "timer_started_at", "timer_status")


class SyncGateway:
    def __init__(
        self,
        store: TaskStore,
        table: RemoteTaskTable,
        *,
        feed: ChangeFeed | None = None,
    ) -> None:
        self._store = store
        self._table = table
        self._feed = feed
        self._session: Session | None = None
        self._feed_unsubscribe: Unsubscribe | None = None

        self._inflight: set[asyncio.Task[Any]] = set()
        self._placeholder_tail: dict[str, asyncio.Task[Any]] = {}  # last queued op per placeholder
        self._resolved: dict[str, str] = {}  # placeholder -> permanent id

        self._error_listeners: list[ErrorListener] = []

        store.attach_sink(self)

    # ---- session lifecycle ----

    @property
    def session(self) -> Session | None:
        return self._session

    @property
    def inflight_count(self) -> int:
        return len(self._inflight)

    async def start_session(self, user_id: str) -> Session:
        """
        Begin a session for `user_id`: load tasks (newest first) and categories, seed the
        store, then listen to the change feed. A failed load is reported and leaves the
        store empty; the session still starts so local commands keep working.
        """
        if self._session is not None:
            self.end_session()

        session = Session(user_id=str(user_id))
        self._session = session
        logger.info("Session started user_id=%s", session.user_id)

        try:
            await self._load(session, keep_unsaved=False)
        except StaleSessionError:
            logger.debug("initial load discarded: session changed")
            return session
        except RemoteOperationError as e:
            self._report(e)
            self._store.clear()

        if self._feed is not None and self._session is session:
            self._feed_unsubscribe = self._feed.subscribe(
                lambda change: self._on_remote_change(change, session)
            )
        return session

    def end_session(self) -> None:
        """
        Close the session: stop listening, forget placeholder bookkeeping, clear the store.

        In-flight remote operations are left to finish; their results are discarded.
        """
        if self._feed_unsubscribe is not None:
            try:
                self._feed_unsubscribe()
            except Exception:
                logger.exception("feed unsubscribe failed")
            self._feed_unsubscribe = None

        if self._session is not None:
            logger.info("Session ended user_id=%s", self._session.user_id)
        self._session = None
        self._placeholder_tail.clear()
        self._resolved.clear()
        self._store.clear()

    async def resync(self) -> None:
        """
        Reload from the remote table after a reconnect.

        Tasks that were never persisted (still on a placeholder id) stay on top;
        tasks deleted locally in this session do not come back.
        """
        session = self._session
        if session is None:
            return
        try:
            await self._load(session, keep_unsaved=True)
        except StaleSessionError:
            logger.debug("resync discarded: session changed")
        except RemoteOperationError as e:
            self._report(e)

    async def _load(self, session: Session, *, keep_unsaved: bool) -> None:
        task_rows = await self._table.select_tasks(user_id=session.user_id)
        category_rows = await self._table.select_categories(user_id=session.user_id)
        self._check_session(session)

        tasks: list[Task] = []
        for row in task_rows:
            try:
                tasks.append(task_from_row(row))
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping malformed task row: %r", row)

        categories = []
        for row in category_rows:
            try:
                categories.append(category_from_row(row))
            except (KeyError, TypeError, ValueError):
                logger.warning("skipping malformed category row: %r", row)

        if keep_unsaved:
            unsaved = [t for t in self._store.list_tasks() if self._store.is_placeholder(t.id)]
            self._store.seed([*unsaved, *tasks], categories, reset_deleted=False)
        else:
            self._store.seed(tasks, categories)

    def _check_session(self, session: Session) -> None:
        if self._session is not session:
            raise StaleSessionError(f"session of user {session.user_id} is no longer current")

    # ---- error reporting ----

    def on_error(self, callback: ErrorListener) -> Unsubscribe:
        self._error_listeners.append(callback)

        def _unsubscribe() -> None:
            try:
                self._error_listeners.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    def _report(self, err: RemoteOperationError) -> None:
        logger.warning("remote operation failed: %s", err)
        for cb in list(self._error_listeners):
            try:
                cb(err)
            except Exception:
                logger.exception("error listener failed")

    # ---- outbound (TaskStore -> remote) ----

    def submit(self, mutation: Mutation) -> asyncio.Task[RemoteOperationError | None] | None:
        """
        Schedule the remote write for one mutation. Returns the asyncio task (resolving to
        None or the reported RemoteOperationError), or None if nothing was scheduled.
        """
        session = self._session
        if session is None:
            logger.debug("no session; mutation op=%s task_id=%s kept local", mutation.op.value, mutation.task_id)
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            err = RemoteOperationError("no running event loop", op=mutation.op.value, task_id=mutation.task_id)
            self._report(err)
            return None

        prior: asyncio.Task[Any] | None = None
        placeholder = self._store.is_placeholder(mutation.task_id)
        if placeholder:
            prior = self._placeholder_tail.get(mutation.task_id)

        task = loop.create_task(self._run(mutation, session, prior))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

        if placeholder:
            self._placeholder_tail[mutation.task_id] = task
            task.add_done_callback(lambda t, key=mutation.task_id: self._release_tail(key, t))
        return task

    def _release_tail(self, placeholder_id: str, task: asyncio.Task[Any]) -> None:
        if self._placeholder_tail.get(placeholder_id) is task:
            del self._placeholder_tail[placeholder_id]

    async def drain(self) -> None:
        """Wait until every in-flight remote operation has finished."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def _run(
        self,
        mutation: Mutation,
        session: Session,
        prior: asyncio.Task[Any] | None,
    ) -> RemoteOperationError | None:
        if prior is not None:
            await asyncio.wait({prior})

        try:
            if self._store.is_placeholder(mutation.task_id):
                await self._apply_for_placeholder(mutation, session)
            else:
                await self._apply(mutation.op, mutation.task_id, mutation, session)
            return None
        except StaleSessionError:
            logger.debug("discarding result of op=%s task_id=%s: session changed", mutation.op.value, mutation.task_id)
            return None
        except RemoteOperationError as e:
            if e.op is None:
                e.op = mutation.op.value
            if e.task_id is None:
                e.task_id = mutation.task_id
            if self._session is session:
                self._report(e)
            return e
        except Exception as e:
            logger.exception("unexpected failure op=%s task_id=%s", mutation.op.value, mutation.task_id)
            err = RemoteOperationError(str(e) or e.__class__.__name__, op=mutation.op.value, task_id=mutation.task_id)
            if self._session is session:
                self._report(err)
            return err

    async def _apply_for_placeholder(self, mutation: Mutation, session: Session) -> None:
        placeholder_id = mutation.task_id
        self._check_session(session)
        permanent = self._resolved.get(placeholder_id)

        if permanent is not None:
            # Already persisted: an edit (even one issued as "insert") is an update now.
            op = MutationOp.DELETE if mutation.op == MutationOp.DELETE else MutationOp.UPDATE
            await self._apply(op, permanent, mutation, session)
            return

        if mutation.op == MutationOp.DELETE:
            logger.debug("task %s was never persisted; nothing to delete remotely", placeholder_id)
            return

        current = self._store.get(placeholder_id)
        if current is None:
            # Deleted locally before its creation reached the remote table.
            return

        row = task_to_row(current, include_id=False)
        row["user_id"] = session.user_id
        created = await self._table.insert(row)
        self._check_session(session)

        remote = task_from_row(created)
        self._resolved[placeholder_id] = remote.id
        self._store.reconcile_id(placeholder_id, remote)
        logger.info("Task persisted %s -> %s", placeholder_id, remote.id)

    async def _apply(self, op: MutationOp, task_id: str, mutation: Mutation, session: Session) -> None:
        if op == MutationOp.DELETE:
            await self._table.delete(task_id)
            self._check_session(session)
            return

        if op == MutationOp.INSERT or not mutation.fields:
            snapshot = mutation.snapshot
            if snapshot is None:
                return
            fields = {name: getattr(snapshot, name) for name in _FULL_UPDATE_FIELDS}
        else:
            fields = dict(mutation.fields)

        updated = await self._table.update(task_id, fields_to_row(fields))
        self._check_session(session)
        if updated is None:
            logger.debug("remote update matched no row task_id=%s", task_id)

    # ---- inbound (remote -> TaskStore) ----

    def _on_remote_change(self, change: RemoteChange, session: Session) -> None:
        if self._session is not session:
            logger.debug("discarding remote %s task_id=%s: session changed", change.kind.value, change.task_id)
            return

        if change.kind == RemoteChangeKind.DELETE:
            self._store.remove_remote(change.task_id)
            return

        record = change.record or {}
        owner = record.get("user_id")
        if owner is not None and str(owner) != session.user_id:
            return

        try:
            task = task_from_row(record)
        except (KeyError, TypeError, ValueError):
            logger.warning("skipping malformed remote change: %r", change)
            return

        self._store.apply_remote(task, inserted=change.kind == RemoteChangeKind.INSERT)
