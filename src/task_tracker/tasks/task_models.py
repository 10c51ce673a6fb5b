# src/task_tracker/tasks/task_models.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, fields, replace
from datetime import date, datetime, timezone
from enum import StrEnum
from typing import Any, Mapping

from ..core.errors import ValidationError

DEFAULT_PLACEHOLDER_PREFIX = "temp-"


class TimerStatus(StrEnum):
    """
    Lifecycle of a task's optional countdown.

    Notes:
    - completed/failed are terminal: no timer command is accepted afterwards.
    - a task without timer_duration has no status at all (None), never not_started.
    """

    NOT_STARTED = "not_started"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TimerStatus.COMPLETED, TimerStatus.FAILED)

    @classmethod
    def from_db(cls, raw: str | None) -> TimerStatus:
        if not raw:
            return cls.NOT_STARTED
        try:
            return cls(raw)
        except Exception:
            return cls.NOT_STARTED


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_db(cls, raw: str | None) -> Priority:
        if not raw:
            return cls.MEDIUM
        try:
            return cls(str(raw).lower())
        except Exception:
            return cls.MEDIUM


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    title: str
    created_at: datetime

    description: str = ""
    category: str = ""
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None
    completed: bool = False

    # All-or-nothing: duration present <=> timer_status present.
    timer_duration: int | None = None
    timer_started_at: datetime | None = None
    timer_status: TimerStatus | None = None

    user_id: str | None = None

    @property
    def has_timer(self) -> bool:
        return self.timer_duration is not None and self.timer_status is not None


@dataclass(slots=True, frozen=True)
class Category:
    id: str
    name: str
    color: str = ""
    created_at: datetime | None = None


# Fields a user edit may touch. id/created_at/user_id belong to the store and the remote table;
# timer_status/timer_started_at only move through timer commands.
EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "category",
        "priority",
        "due_date",
        "completed",
        "timer_duration",
    }
)

_TASK_FIELD_NAMES = frozenset(f.name for f in fields(Task))


# ---- placeholder ids ----


def new_placeholder_id(prefix: str = DEFAULT_PLACEHOLDER_PREFIX) -> str:
    return f"{prefix}{uuid.uuid4().hex}"


def is_placeholder_id(task_id: str | None, prefix: str = DEFAULT_PLACEHOLDER_PREFIX) -> bool:
    return bool(task_id) and str(task_id).startswith(prefix)


# ---- value coercion ----


def parse_timestamp(raw: Any) -> datetime | None:
    """Accept datetime, date, ISO-8601 strings (with 'Z') or epoch seconds. Naive values are UTC."""
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        dt = raw
    elif isinstance(raw, date):
        dt = datetime(raw.year, raw.month, raw.day)
    elif isinstance(raw, (int, float)):
        return datetime.fromtimestamp(float(raw), tz=timezone.utc)
    else:
        s = str(raw).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_duration(raw: Any) -> int | None:
    if raw is None or raw == "":
        return None
    try:
        minutes = int(raw)
    except (TypeError, ValueError):
        return None
    return minutes if minutes > 0 else None


def normalize_timer_fields(task: Task) -> Task:
    """
    Enforce the all-or-nothing rule for the timer field pair.

    - no (positive) duration -> every timer field is dropped
    - duration without status -> not_started
    """
    duration = _parse_duration(task.timer_duration)
    if duration is None:
        if task.timer_duration is None and task.timer_status is None and task.timer_started_at is None:
            return task
        return replace(task, timer_duration=None, timer_status=None, timer_started_at=None)

    status = task.timer_status or TimerStatus.NOT_STARTED
    if duration != task.timer_duration or status != task.timer_status:
        return replace(task, timer_duration=duration, timer_status=status)
    return task


def coerce_fields(raw: Mapping[str, Any]) -> dict[str, Any]:
    """
    Clean a partial task (user input or patch) into typed values.

    Unknown keys are dropped. Values are converted to the types Task expects.
    """
    out: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in _TASK_FIELD_NAMES:
            continue
        if key in ("created_at", "due_date", "timer_started_at"):
            out[key] = parse_timestamp(value)
        elif key == "priority":
            out[key] = value if isinstance(value, Priority) else Priority.from_db(value)
        elif key == "timer_status":
            if value is None:
                out[key] = None
            else:
                out[key] = value if isinstance(value, TimerStatus) else TimerStatus.from_db(value)
        elif key == "timer_duration":
            out[key] = _parse_duration(value)
        elif key == "completed":
            out[key] = bool(value)
        elif key in ("title", "description", "category"):
            out[key] = "" if value is None else str(value)
        elif key in ("id", "user_id"):
            out[key] = None if value is None else str(value)
        else:
            out[key] = value
    return out


def build_task(fields_in: Mapping[str, Any], *, task_id: str, now: datetime) -> Task:
    """
    Build a brand-new task from user input.

    A positive duration attaches a timer in not_started state; anything else means no timer.
    created_at is set here once and never changes afterwards.
    """
    data = coerce_fields(fields_in)
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required")

    duration = data.get("timer_duration")
    task = Task(
        id=task_id,
        title=title,
        created_at=now,
        description=(data.get("description") or "").strip(),
        category=data.get("category") or "",
        priority=data.get("priority") or Priority.MEDIUM,
        due_date=data.get("due_date"),
        completed=bool(data.get("completed", False)),
        timer_duration=duration,
        timer_started_at=None,
        timer_status=TimerStatus.NOT_STARTED if duration else None,
        user_id=data.get("user_id"),
    )
    return task


def apply_patch(task: Task, patch: Mapping[str, Any]) -> Task:
    """Merge an edit into a task. Only EDITABLE_FIELDS are taken; timer pair stays consistent."""
    data = {k: v for k, v in coerce_fields(patch).items() if k in EDITABLE_FIELDS}
    if "title" in data:
        title = (data["title"] or "").strip()
        if not title:
            raise ValidationError("title is required", task_id=task.id)
        data["title"] = title
    if not data:
        return task
    return normalize_timer_fields(replace(task, **data))


# ---- row codec (remote `tasks` table, snake_case columns) ----

TASK_COLUMNS = (
    "id",
    "title",
    "description",
    "category",
    "priority",
    "due_date",
    "completed",
    "timer_duration",
    "timer_started_at",
    "timer_status",
    "created_at",
    "user_id",
)


def task_from_row(row: Mapping[str, Any]) -> Task:
    created_at = parse_timestamp(row.get("created_at")) or datetime.fromtimestamp(0, tz=timezone.utc)
    status_raw = row.get("timer_status")
    task = Task(
        id=str(row["id"]),
        title=str(row.get("title") or ""),
        created_at=created_at,
        description=str(row.get("description") or ""),
        category=str(row.get("category") or ""),
        priority=Priority.from_db(row.get("priority")),
        due_date=parse_timestamp(row.get("due_date")),
        completed=bool(row.get("completed") or False),
        timer_duration=_parse_duration(row.get("timer_duration")),
        timer_started_at=parse_timestamp(row.get("timer_started_at")),
        timer_status=TimerStatus.from_db(status_raw) if status_raw else None,
        user_id=None if row.get("user_id") is None else str(row.get("user_id")),
    )
    return normalize_timer_fields(task)


def _value_to_row(key: str, value: Any) -> Any:
    if isinstance(value, datetime):
        return format_timestamp(value)
    if isinstance(value, StrEnum):
        return value.value
    return value


def fields_to_row(data: Mapping[str, Any]) -> dict[str, Any]:
    return {k: _value_to_row(k, v) for k, v in data.items() if k in _TASK_FIELD_NAMES}


def task_to_row(task: Task, *, include_id: bool = True) -> dict[str, Any]:
    row = {name: _value_to_row(name, getattr(task, name)) for name in TASK_COLUMNS}
    if not include_id:
        row.pop("id", None)
    return row


def category_from_row(row: Mapping[str, Any]) -> Category:
    return Category(
        id=str(row["id"]),
        name=str(row.get("name") or ""),
        color=str(row.get("color") or ""),
        created_at=parse_timestamp(row.get("created_at")),
    )

