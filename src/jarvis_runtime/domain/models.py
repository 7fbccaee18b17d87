"""Task and workspace models plus the task state machine transition table."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from pathlib import Path
from typing import Final

from jarvis_runtime.domain import ids as domain_ids
from jarvis_runtime.domain.errors import InvalidTransitionError

_MAX_TASK_TEXT: Final[int] = 64 * 1024


class TaskState(StrEnum):
    INTAKE = "INTAKE"
    EXECUTE = "EXECUTE"
    VERIFY = "VERIFY"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


TERMINAL_STATES: Final[frozenset[TaskState]] = frozenset({TaskState.COMPLETE, TaskState.FAILED})

# COMPLETE is reachable only from VERIFY; the verdict check lives in the orchestrator.
_ALLOWED_TRANSITIONS: Final[dict[TaskState, frozenset[TaskState]]] = {
    TaskState.INTAKE: frozenset({TaskState.EXECUTE, TaskState.FAILED}),
    TaskState.EXECUTE: frozenset({TaskState.VERIFY, TaskState.FAILED}),
    TaskState.VERIFY: frozenset({TaskState.COMPLETE, TaskState.FAILED}),
    TaskState.COMPLETE: frozenset(),
    TaskState.FAILED: frozenset(),
}


def can_transition(current: TaskState, target: TaskState) -> bool:
    return target in _ALLOWED_TRANSITIONS[TaskState(current)]


def assert_transition(current: TaskState, target: TaskState) -> None:
    """Raise ``InvalidTransitionError`` unless ``current -> target`` is permitted."""
    if not can_transition(current, target):
        raise InvalidTransitionError(f"illegal task transition {current} -> {target}")


@dataclass(slots=True)
class Task:
    """One execution attempt of a natural-language instruction.

    The ledger is the durable history of a task; instances are never persisted on
    their own. ``state`` is advanced only after the matching STATE event is written.
    """

    id: str
    text: str
    state: TaskState = TaskState.INTAKE
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=UTC))

    def __post_init__(self) -> None:
        domain_ids.validate_task_id(self.id)
        if not isinstance(self.text, str):
            raise ValueError(f"Task.text must be a string, got {type(self.text).__name__}")
        if len(self.text) > _MAX_TASK_TEXT:
            raise ValueError(f"Task.text must be <= {_MAX_TASK_TEXT} characters")
        self.state = TaskState(self.state)
        if self.created_at.tzinfo is None or self.created_at.utcoffset() is None:
            raise ValueError("Task.created_at must be timezone-aware")

    @classmethod
    def new(cls, text: str, *, now: datetime | None = None) -> Task:
        return cls(
            id=domain_ids.generate_task_id(),
            text=text,
            created_at=now if now is not None else datetime.now(tz=UTC),
        )

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def advance(self, target: TaskState) -> None:
        assert_transition(self.state, target)
        self.state = target


@dataclass(frozen=True, slots=True)
class Workspace:
    """
    The bounded filesystem target a task may act on.

    Required invariants:
    - ``repo_root`` and ``allowed_root`` are absolute.
    - ``allowed_root`` equals ``repo_root`` or is a descendant of it.
    - ``id`` is the deterministic digest token of ``repo_root``.
    """

    id: str
    repo_root: Path
    allowed_root: Path

    def __post_init__(self) -> None:
        domain_ids.validate_workspace_id(self.id)
        if not self.repo_root.is_absolute():
            raise ValueError(f"Workspace.repo_root must be absolute: {self.repo_root}")
        if not self.allowed_root.is_absolute():
            raise ValueError(f"Workspace.allowed_root must be absolute: {self.allowed_root}")
        try:
            self.allowed_root.relative_to(self.repo_root)
        except ValueError as exc:
            raise ValueError(
                f"Workspace.allowed_root {self.allowed_root} is outside repo_root {self.repo_root}"
            ) from exc
        if domain_ids.workspace_id_for_path(self.repo_root) != self.id:
            raise ValueError("Workspace.id does not match the digest of repo_root")


__all__ = [
    "TERMINAL_STATES",
    "Task",
    "TaskState",
    "Workspace",
    "assert_transition",
    "can_transition",
]
