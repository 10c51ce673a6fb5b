# src/task_tracker/tasks/timer_engine.py

from __future__ import annotations

"""
Timer evaluation.

Pure functions over (task, now): no I/O, no clock reads, no store access.
The scheduler samples the clock once per tick and passes `now` in, so every
projection computed for that tick agrees with the transition decision.

Elapsed time is measured from timer_started_at only. There is no memory of time
spent before a pause: resuming re-stamps timer_started_at (see TaskStore.start_timer),
which restarts the full duration window.
"""

from dataclasses import replace
from datetime import datetime, timedelta

from .task_models import Task, TimerStatus

_MINUTE = timedelta(minutes=1)
_SECOND = timedelta(seconds=1)


def evaluate(task: Task, now: datetime) -> Task:
    """
    Return the task as it should be at `now`.

    Only a running timer can change: once floor(elapsed minutes) reaches the duration
    the task becomes failed and completed is forced to False. Anything else is returned
    unchanged (the same object), which makes repeated evaluation a no-op.
    """
    if task.timer_status != TimerStatus.RUNNING:
        return task
    if task.timer_started_at is None or task.timer_duration is None:
        return task

    elapsed_minutes = (now - task.timer_started_at) // _MINUTE
    if elapsed_minutes >= task.timer_duration:
        return replace(task, timer_status=TimerStatus.FAILED, completed=False)
    return task


def elapsed_seconds(task: Task, now: datetime) -> int:
    """Whole seconds since the timer was (last) started; 0 if never started or clock went backwards."""
    if task.timer_started_at is None:
        return 0
    return max(0, (now - task.timer_started_at) // _SECOND)


def remaining_seconds(task: Task, now: datetime) -> int | None:
    """
    Seconds left before expiry, for display.

    None means the task has no timer. Terminal timers show 0. Not-started and paused
    timers show the full duration: resuming starts the whole window over.
    """
    if not task.has_timer or task.timer_duration is None:
        return None

    total = task.timer_duration * 60
    status = task.timer_status

    if status in (TimerStatus.NOT_STARTED, TimerStatus.PAUSED):
        return total
    if status in (TimerStatus.COMPLETED, TimerStatus.FAILED):
        return 0
    if task.timer_started_at is None:
        return total
    return max(0, total - elapsed_seconds(task, now))


def format_remaining(total_seconds: int) -> str:
    """1h05m09s above an hour, 4m09s below."""
    total_seconds = max(0, int(total_seconds))
    hours, rest = divmod(total_seconds, 3600)
    minutes, seconds = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h{minutes:02d}m{seconds:02d}s"
    return f"{minutes}m{seconds:02d}s"
