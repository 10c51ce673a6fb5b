# src/task_tracker/tasks/task_store.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import StrEnum
from typing import Any, Callable, Iterable, Mapping

from ..core.clock import SystemClock
from ..core.errors import TrackerError, ValidationError
from ..core.ports import Clock, MutationSink, Unsubscribe
from . import timer_engine
from .task_models import (
    DEFAULT_PLACEHOLDER_PREFIX,
    EDITABLE_FIELDS,
    Category,
    Task,
    TimerStatus,
    apply_patch,
    build_task,
    is_placeholder_id,
    new_placeholder_id,
)

logger = logging.getLogger(__name__)


class ChangeKind(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    REKEYED = "rekeyed"  # placeholder id replaced by the permanent remote id
    RESET = "reset"  # whole collection replaced (session seed / clear)


@dataclass(slots=True, frozen=True)
class TaskChange:
    kind: ChangeKind
    task: Task | None
    previous_id: str | None = None


class MutationOp(StrEnum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(slots=True, frozen=True)
class Mutation:
    """
    One optimistic change that still has to reach the remote table.

    `fields` holds only what changed (typed values); `snapshot` is the full local task
    right after the change, so an unsaved task can always be inserted as a whole.
    """

    op: MutationOp
    task_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    snapshot: Task | None = None


@dataclass(slots=True)
class CommandResult:
    """
    Outcome of a TaskStore command.

    - applied: the local state changed
    - error: why nothing happened (ValidationError); commands never raise it
    - remote: asyncio task of the forwarded remote write, resolving to None
      or to the RemoteOperationError that was reported
    """

    task: Task | None
    applied: bool = True
    error: TrackerError | None = None
    remote: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None


TaskListener = Callable[[TaskChange], None]

_TIMER_FIELDS = ("timer_duration", "timer_started_at", "timer_status")


class TaskStore:
    """
    Authoritative in-memory task collection.

    Every write goes through a command here (user commands, scheduler expiry, and the
    remote-origin entry points used by the SyncGateway). Commands apply locally and
    synchronously, notify subscribers, then forward a Mutation to the attached sink.
    Remote failures never roll back the local state.

    Thread-safety:
    - none; everything runs on one asyncio event loop
    """

    def __init__(
        self,
        *,
        clock: Clock | None = None,
        placeholder_prefix: str = DEFAULT_PLACEHOLDER_PREFIX,
    ) -> None:
        self._clock: Clock = clock or SystemClock()
        self._placeholder_prefix = placeholder_prefix or DEFAULT_PLACEHOLDER_PREFIX
        self._tasks: dict[str, Task] = {}
        self._order: list[str] = []  # display order, newest first
        self._categories: list[Category] = []
        self._deleted: set[str] = set()
        self._listeners: list[TaskListener] = []
        self._sink: MutationSink | None = None

    # ---- wiring ----

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def placeholder_prefix(self) -> str:
        return self._placeholder_prefix

    def attach_sink(self, sink: MutationSink | None) -> None:
        self._sink = sink

    def subscribe(self, callback: TaskListener) -> Unsubscribe:
        self._listeners.append(callback)

        def _unsubscribe() -> None:
            try:
                self._listeners.remove(callback)
            except ValueError:
                pass

        return _unsubscribe

    # ---- reads ----

    def get(self, task_id: str) -> Task | None:
        return self._tasks.get(task_id)

    def list_tasks(self) -> list[Task]:
        return [self._tasks[tid] for tid in self._order]

    def running_tasks(self) -> list[Task]:
        return [t for t in self.list_tasks() if t.has_timer and t.timer_status == TimerStatus.RUNNING]

    @property
    def categories(self) -> list[Category]:
        return list(self._categories)

    def is_placeholder(self, task_id: str) -> bool:
        return is_placeholder_id(task_id, self._placeholder_prefix)

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # ---- low-level helpers ----

    def _notify(self, change: TaskChange) -> None:
        for cb in list(self._listeners):
            try:
                cb(change)
            except Exception:
                logger.exception("task listener failed kind=%s", change.kind.value)

    def _forward(self, mutation: Mutation) -> Any:
        if self._sink is None:
            return None
        try:
            return self._sink.submit(mutation)
        except Exception:
            logger.exception("forwarding mutation failed op=%s task_id=%s", mutation.op.value, mutation.task_id)
            return None

    def _put(self, task: Task) -> None:
        self._tasks[task.id] = task

    def _insert_ordered(self, task: Task) -> None:
        """Place a remote-origin task by created_at (newest first)."""
        for idx, tid in enumerate(self._order):
            if self._tasks[tid].created_at < task.created_at:
                self._order.insert(idx, task.id)
                break
        else:
            self._order.append(task.id)
        self._tasks[task.id] = task

    def _drop(self, task_id: str) -> Task | None:
        task = self._tasks.pop(task_id, None)
        if task is not None:
            self._order.remove(task_id)
        return task

    @staticmethod
    def _rejected(task: Task | None, message: str, task_id: str | None) -> CommandResult:
        logger.debug("command rejected task_id=%s: %s", task_id, message)
        return CommandResult(task=task, applied=False, error=ValidationError(message, task_id=task_id))

    def _commit_update(self, after: Task, changed: Mapping[str, Any]) -> CommandResult:
        self._put(after)
        self._notify(TaskChange(ChangeKind.UPDATED, after))
        remote = self._forward(
            Mutation(op=MutationOp.UPDATE, task_id=after.id, fields=dict(changed), snapshot=after)
        )
        return CommandResult(task=after, remote=remote)

    # ---- user commands ----

    def create(self, fields: Mapping[str, Any]) -> CommandResult:
        """
        Create a task under a placeholder id and put it at the head of the list.

        The SyncGateway later swaps the placeholder for the permanent id in place.
        """
        placeholder = new_placeholder_id(self._placeholder_prefix)
        try:
            task = build_task(fields, task_id=placeholder, now=self._clock.now())
        except ValidationError as e:
            return CommandResult(task=None, applied=False, error=e)

        self._tasks[task.id] = task
        self._order.insert(0, task.id)
        logger.debug("Task created id=%s timer=%s", task.id, task.timer_duration)
        self._notify(TaskChange(ChangeKind.CREATED, task))

        remote = self._forward(Mutation(op=MutationOp.INSERT, task_id=task.id, snapshot=task))
        return CommandResult(task=task, remote=remote)

    def toggle_complete(self, task_id: str) -> CommandResult:
        """Flip `completed`. Timer fields are deliberately left alone."""
        task = self._tasks.get(task_id)
        if task is None:
            return self._rejected(None, "unknown task", task_id)
        after = replace(task, completed=not task.completed)
        return self._commit_update(after, {"completed": after.completed})

    def update(self, task_id: str, patch: Mapping[str, Any]) -> CommandResult:
        """
        Edit a task.

        An edit on a task that only has a placeholder id becomes its creation:
        the merged task is forwarded as an insert.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return self._rejected(None, "unknown task", task_id)

        try:
            after = apply_patch(task, patch)
        except ValidationError as e:
            return CommandResult(task=task, applied=False, error=e)

        changed = {
            name: getattr(after, name)
            for name in (*sorted(EDITABLE_FIELDS), *_TIMER_FIELDS)
            if getattr(after, name) != getattr(task, name)
        }

        if not changed:
            return CommandResult(task=task, applied=False)

        if self.is_placeholder(task_id):
            self._put(after)
            self._notify(TaskChange(ChangeKind.UPDATED, after))
            remote = self._forward(Mutation(op=MutationOp.INSERT, task_id=task_id, snapshot=after))
            return CommandResult(task=after, remote=remote)

        return self._commit_update(after, changed)

    def delete(self, task_id: str) -> CommandResult:
        task = self._drop(task_id)
        if task is None:
            return self._rejected(None, "unknown task", task_id)

        self._deleted.add(task_id)
        logger.debug("Task deleted id=%s", task_id)
        self._notify(TaskChange(ChangeKind.DELETED, task))
        remote = self._forward(Mutation(op=MutationOp.DELETE, task_id=task_id, snapshot=task))
        return CommandResult(task=task, remote=remote)

    # ---- timer commands ----

    def _timer_command(
        self,
        task_id: str,
        *,
        name: str,
        allowed: Iterable[TimerStatus],
        transform: Callable[[Task], Task],
    ) -> CommandResult:
        """
        Shared path for timer transitions.

        A command from an illegal source state is a no-op that reports ValidationError,
        so duplicate UI events (double clicks, two tabs) are harmless.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return self._rejected(None, "unknown task", task_id)
        if not task.has_timer:
            return self._rejected(task, "task has no timer", task_id)
        if task.timer_status not in set(allowed):
            return self._rejected(task, f"cannot {name} timer in state {task.timer_status}", task_id)

        after = transform(task)
        changed = {
            k: getattr(after, k)
            for k in ("timer_started_at", "timer_status", "completed")
            if getattr(after, k) != getattr(task, k)
        }
        logger.debug("Timer %s id=%s %s -> %s", name, task_id, task.timer_status, after.timer_status)
        return self._commit_update(after, changed)

    def start_timer(self, task_id: str) -> CommandResult:
        """
        not_started/paused -> running.

        timer_started_at is always re-stamped to now, also on resume: the full
        duration window starts over (pause does not bank elapsed time).
        """
        now = self._clock.now()
        return self._timer_command(
            task_id,
            name="start",
            allowed=(TimerStatus.NOT_STARTED, TimerStatus.PAUSED),
            transform=lambda t: replace(t, timer_started_at=now, timer_status=TimerStatus.RUNNING),
        )

    def pause_timer(self, task_id: str) -> CommandResult:
        """running -> paused; timer_started_at is kept as is."""
        return self._timer_command(
            task_id,
            name="pause",
            allowed=(TimerStatus.RUNNING,),
            transform=lambda t: replace(t, timer_status=TimerStatus.PAUSED),
        )

    def stop_timer(self, task_id: str) -> CommandResult:
        """running/paused -> completed (terminal); the task counts as done."""
        return self._timer_command(
            task_id,
            name="stop",
            allowed=(TimerStatus.RUNNING, TimerStatus.PAUSED),
            transform=lambda t: replace(t, timer_status=TimerStatus.COMPLETED, completed=True),
        )

    def expire_timer(self, task_id: str, now: datetime | None = None) -> CommandResult:
        """
        running -> failed when the duration has elapsed at `now`.

        Used by the scheduler; the decision itself is timer_engine.evaluate, so a
        timer that has not run out yet is a no-op.
        """
        task = self._tasks.get(task_id)
        if task is None:
            return self._rejected(None, "unknown task", task_id)

        when = now if now is not None else self._clock.now()
        evaluated = timer_engine.evaluate(task, when)
        if evaluated is task:
            return self._rejected(task, "timer has not expired", task_id)

        return self._timer_command(
            task_id,
            name="expire",
            allowed=(TimerStatus.RUNNING,),
            transform=lambda _t: evaluated,
        )

    # ---- remote-origin entry points (SyncGateway only) ----

    def seed(
        self,
        tasks: Iterable[Task],
        categories: Iterable[Category] = (),
        *,
        reset_deleted: bool = True,
    ) -> None:
        """
        Replace the whole collection with a load from the remote table (newest first).

        reset_deleted=False is used when reloading inside the same session: tasks deleted
        locally whose remote delete may still be in flight are not resurrected.
        """
        if reset_deleted:
            self._deleted.clear()
        self._tasks = {}
        self._order = []
        for t in tasks:
            if t.id in self._tasks or t.id in self._deleted:
                continue
            self._tasks[t.id] = t
            self._order.append(t.id)
        self._categories = list(categories)
        logger.info("TaskStore seeded tasks=%d categories=%d", len(self._tasks), len(self._categories))
        self._notify(TaskChange(ChangeKind.RESET, None))

    def clear(self) -> None:
        """Drop everything (session end). Nothing may survive a session boundary."""
        self._tasks = {}
        self._order = []
        self._categories = []
        self._deleted.clear()
        logger.info("TaskStore cleared")
        self._notify(TaskChange(ChangeKind.RESET, None))

    def reconcile_id(self, placeholder_id: str, remote: Task) -> Task | None:
        """
        Swap a placeholder id for the permanent one, keeping list position and local fields.

        If the realtime echo of the insert got here first, that entry is folded in so
        the task appears exactly once. Returns None when the task was deleted meanwhile.
        """
        local = self._tasks.get(placeholder_id)
        if local is None:
            if placeholder_id in self._deleted:
                self._deleted.add(remote.id)
                if self._drop(remote.id) is not None:
                    self._notify(TaskChange(ChangeKind.DELETED, remote))
            return None

        rekeyed = replace(
            local,
            id=remote.id,
            created_at=remote.created_at,
            user_id=remote.user_id if remote.user_id is not None else local.user_id,
        )

        folded = self._drop(remote.id)
        if folded is not None:
            # Observers saw the echo as a separate task; retract it before the rekey.
            self._notify(TaskChange(ChangeKind.DELETED, folded))

        idx = self._order.index(placeholder_id)
        self._order[idx] = remote.id
        del self._tasks[placeholder_id]
        self._tasks[remote.id] = rekeyed

        logger.debug("Task rekeyed %s -> %s", placeholder_id, remote.id)
        self._notify(TaskChange(ChangeKind.REKEYED, rekeyed, previous_id=placeholder_id))
        return rekeyed

    def apply_remote(self, task: Task, *, inserted: bool = False) -> Task | None:
        """
        Merge a remote record, last write wins (the record replaces the local one whole).

        Updates for tasks that no longer exist locally are ignored, and so are inserts
        for ids deleted locally in this session.
        """
        if task.id in self._deleted:
            logger.debug("remote %s ignored for deleted task id=%s", "insert" if inserted else "update", task.id)
            return None

        if task.id in self._tasks:
            self._put(task)
            self._notify(TaskChange(ChangeKind.UPDATED, task))
            return task

        if not inserted:
            logger.debug("remote update ignored for unknown task id=%s", task.id)
            return None

        self._insert_ordered(task)
        self._notify(TaskChange(ChangeKind.CREATED, task))
        return task

    def remove_remote(self, task_id: str) -> Task | None:
        task = self._drop(task_id)
        self._deleted.add(task_id)
        if task is not None:
            self._notify(TaskChange(ChangeKind.DELETED, task))
        return task
