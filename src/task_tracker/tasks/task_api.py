# src/task_tracker/tasks/task_api.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Iterable

from . import timer_engine
from .task_models import Task, TimerStatus

VIEW_ALL = "all"
VIEW_ACTIVE = "active"
VIEW_COMPLETED = "completed"


class TimerAction(StrEnum):
    START = "start"
    RESUME = "resume"
    PAUSE = "pause"
    STOP = "stop"


_ACTIONS: dict[TimerStatus, tuple[TimerAction, ...]] = {
    TimerStatus.NOT_STARTED: (TimerAction.START,),
    TimerStatus.RUNNING: (TimerAction.PAUSE, TimerAction.STOP),
    TimerStatus.PAUSED: (TimerAction.RESUME, TimerAction.STOP),
    TimerStatus.COMPLETED: (),
    TimerStatus.FAILED: (),
}


@dataclass(slots=True, frozen=True)
class TimerView:
    """What a task card shows for its timer at one instant."""

    status: TimerStatus
    remaining_seconds: int
    label: str
    actions: tuple[TimerAction, ...]


def filter_tasks(tasks: Iterable[Task], view: str = VIEW_ALL) -> list[Task]:
    """
    Sidebar views: all / active / completed, anything else is a category name.
    Order is preserved.
    """
    view = (view or VIEW_ALL).strip()
    if view == VIEW_ALL:
        return list(tasks)
    if view == VIEW_ACTIVE:
        return [t for t in tasks if not t.completed]
    if view == VIEW_COMPLETED:
        return [t for t in tasks if t.completed]
    return [t for t in tasks if t.category == view]


def is_overdue(task: Task, now: datetime) -> bool:
    return task.due_date is not None and task.due_date < now and not task.completed


def timer_view(task: Task, now: datetime) -> TimerView | None:
    """
    Display projection of a task's timer. None for tasks without a timer.

    Uses the same `now` sample as the scheduler tick that produced it; it never
    changes state, even when the displayed remaining time has reached zero.
    """
    remaining = timer_engine.remaining_seconds(task, now)
    if remaining is None or task.timer_status is None:
        return None
    return TimerView(
        status=task.timer_status,
        remaining_seconds=remaining,
        label=timer_engine.format_remaining(remaining),
        actions=_ACTIONS.get(task.timer_status, ()),
    )
