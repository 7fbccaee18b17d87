"""Error hierarchy shared by every layer of the runtime.

Every error carries a :class:`FailureKind` so callers can tell task logic failures,
verification blocks, infrastructure faults, and caller-initiated cancellation apart
without matching on message text.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, ClassVar

if TYPE_CHECKING:
    from jarvis_runtime.gateway.runner import ToolResult


class FailureKind(StrEnum):
    TASK = "task"
    VERIFICATION = "verification"
    INFRASTRUCTURE = "infrastructure"
    CANCELLED = "cancelled"


class JarvisError(RuntimeError):
    """Base error for all runtime failures."""

    kind: ClassVar[FailureKind] = FailureKind.INFRASTRUCTURE


class ScopeViolationError(JarvisError):
    """Raised when a resolved path escapes the workspace sandbox. Nothing was executed."""

    def __init__(
        self, message: str, *, path: str | None = None, allowed_root: str | None = None
    ) -> None:
        self.path = path
        self.allowed_root = allowed_root
        super().__init__(message)


class ToolError(JarvisError):
    """Base error for a gateway invocation that ran but did not succeed."""

    kind = FailureKind.TASK

    def __init__(self, message: str, *, result: ToolResult | None = None) -> None:
        self.result = result
        super().__init__(message)

    @property
    def exit_code(self) -> int | None:
        return None if self.result is None else self.result.exit_code


class ToolExecutionFailedError(ToolError):
    """Raised when a child exited nonzero or could not be started."""


class TimeoutExceededError(ToolError):
    """Raised when a child exceeded its wall-clock bound and was terminated."""


class TaskCancelledError(JarvisError):
    """Raised when the caller cancelled an in-flight task."""

    kind = FailureKind.CANCELLED


class VerificationBlockedError(JarvisError):
    """Raised when the verification authority returned BLOCK. Never retried."""

    kind = FailureKind.VERIFICATION

    def __init__(self, message: str, *, exit_code: int, verify_event_hash: str) -> None:
        self.exit_code = exit_code
        self.verify_event_hash = verify_event_hash
        super().__init__(message)


class WorkspacePreparationError(JarvisError):
    """Raised when the INTAKE preparation collaborator fails."""

    kind = FailureKind.TASK


class InvalidTransitionError(JarvisError):
    """Raised when a task state change is not permitted by the state machine."""


class LedgerError(JarvisError):
    """Base error for ledger failures. Always fatal to the run."""


class LedgerIOError(LedgerError):
    """Raised when an event could not be serialized or durably written."""


class ChainCorruptionError(LedgerError):
    """Raised when a ledger file holds an unparsable or inconsistent record."""

    def __init__(self, message: str, *, path: str, line_number: int | None = None) -> None:
        self.path = path
        self.line_number = line_number
        super().__init__(message)


class ActorViolationError(JarvisError, ValueError):
    """Raised when an event type is produced by an actor not authorized to emit it."""


__all__ = [
    "ActorViolationError",
    "ChainCorruptionError",
    "FailureKind",
    "InvalidTransitionError",
    "JarvisError",
    "LedgerError",
    "LedgerIOError",
    "ScopeViolationError",
    "TaskCancelledError",
    "TimeoutExceededError",
    "ToolError",
    "ToolExecutionFailedError",
    "VerificationBlockedError",
    "WorkspacePreparationError",
]
