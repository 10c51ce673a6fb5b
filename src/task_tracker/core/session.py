# src/task_tracker/core/session.py

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from enum import StrEnum


class SessionEventKind(StrEnum):
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"


@dataclass(slots=True, frozen=True)
class SessionEvent:
    """What the session collaborator (auth layer) tells us."""

    kind: SessionEventKind
    user_id: str | None = None


@dataclass(slots=True, frozen=True)
class Session:
    """
    One authenticated session.

    `token` is unique per session start, so a result captured under an old session
    never matches the current one even when the same user signs in again.
    """

    user_id: str
    token: str = field(default_factory=lambda: uuid.uuid4().hex)
