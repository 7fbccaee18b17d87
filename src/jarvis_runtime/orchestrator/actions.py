"""Executor actions and the task plan the orchestrator runs.

An action only knows how to describe itself as a gateway invocation and whether its
effect is already present in the workspace. Running, recording, and tolerating failures
are the orchestrator's job.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from jarvis_runtime.domain.errors import ScopeViolationError
from jarvis_runtime.domain.models import Workspace
from jarvis_runtime.gateway.tools import ToolGateway, ToolInvocation
from jarvis_runtime.gateway.workspace import resolve_in_scope
from jarvis_runtime.utils.fs import PathLike

AppliedCheck = Callable[[Workspace], bool]

__all__ = [
    "AppliedCheck",
    "ExecutorAction",
    "PatchAction",
    "StatusAction",
    "TaskPlan",
    "file_contains",
]


@runtime_checkable
class ExecutorAction(Protocol):
    """One gateway call made during EXECUTE."""

    @property
    def summary(self) -> str: ...

    def build(self, gateway: ToolGateway) -> ToolInvocation: ...

    def already_applied(self, workspace: Workspace) -> bool: ...


@dataclass(frozen=True, slots=True)
class PatchAction:
    """Apply a unified diff with ``git apply``.

    A failed apply is tolerated only when ``applied_check`` reports that the workspace
    already holds the patch's effect.
    """

    patch_text: str
    summary: str = "apply patch"
    applied_check: AppliedCheck | None = None

    def __post_init__(self) -> None:
        if not self.patch_text.strip():
            raise ValueError("PatchAction.patch_text must not be empty")

    def build(self, gateway: ToolGateway) -> ToolInvocation:
        return gateway.apply_patch_invocation(self.patch_text)

    def already_applied(self, workspace: Workspace) -> bool:
        if self.applied_check is None:
            return False
        return bool(self.applied_check(workspace))


@dataclass(frozen=True, slots=True)
class StatusAction:
    """Read-only ``git status`` inspection. Never tolerated on failure."""

    summary: str = "inspect status"

    def build(self, gateway: ToolGateway) -> ToolInvocation:
        return gateway.status_invocation()

    def already_applied(self, workspace: Workspace) -> bool:
        return False


def file_contains(relative_path: PathLike, text: str) -> AppliedCheck:
    """Return a predicate that is true when an in-scope file already contains ``text``."""

    if not text:
        raise ValueError("file_contains requires non-empty text")

    def _check(workspace: Workspace) -> bool:
        try:
            target = resolve_in_scope(workspace, relative_path)
        except ScopeViolationError:
            return False
        try:
            return text in target.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return False

    return _check


@dataclass(frozen=True, slots=True)
class TaskPlan:
    """Everything the executor will do for one task, fixed before INTAKE."""

    claim_message: str
    verification_script: PathLike
    actions: tuple[ExecutorAction, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        if not self.claim_message.strip():
            raise ValueError("TaskPlan.claim_message must not be empty")
        object.__setattr__(self, "actions", tuple(self.actions))
