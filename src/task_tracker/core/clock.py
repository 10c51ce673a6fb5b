# src/task_tracker/core/clock.py

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SystemClock:
    """Wall-clock time (timezone-aware UTC). Tests inject a manual clock instead."""

    def now(self) -> datetime:
        return utc_now()
