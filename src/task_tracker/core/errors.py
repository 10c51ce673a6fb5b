# src/task_tracker/core/errors.py

"""
Error taxonomy of the timer/sync core.

None of these are meant to escape into the host application uncaught:
- ValidationError is returned inside a CommandResult (the command was a no-op)
- RemoteOperationError is reported to error listeners and returned by the remote future
- StaleSessionError is only used internally to discard late results
"""

from __future__ import annotations


class TrackerError(Exception):
    """Base class for task tracker errors."""


class ValidationError(TrackerError):
    """A command's preconditions are not met (unknown task, illegal timer transition, ...)."""

    def __init__(self, message: str, *, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class RemoteOperationError(TrackerError):
    """The persistence collaborator rejected the operation or could not be reached."""

    def __init__(
        self,
        message: str,
        *,
        op: str | None = None,
        task_id: str | None = None,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.op = op
        self.task_id = task_id
        self.status_code = status_code

    def __str__(self) -> str:
        base = super().__str__()
        if self.op and self.task_id:
            return f"{base} (op={self.op} task_id={self.task_id})"
        if self.op:
            return f"{base} (op={self.op})"
        return base


class StaleSessionError(TrackerError):
    """A remote-origin result arrived after the session it belongs to has ended."""
