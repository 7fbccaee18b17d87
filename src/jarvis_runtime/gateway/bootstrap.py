"""Privileged workspace bootstrap tier and the preparer collaborators that use it.

The agent-facing :class:`~jarvis_runtime.gateway.tools.ToolGateway` cannot create a
repository. That capability lives here, behind fixed argv recipes, and is handed only to
preparers that run once at INTAKE.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

import structlog

from jarvis_runtime.constants import DEFAULT_BOOTSTRAP_TIMEOUT_SECONDS
from jarvis_runtime.domain.errors import WorkspacePreparationError
from jarvis_runtime.domain.models import Workspace
from jarvis_runtime.gateway.runner import ToolResult, run_command

__all__ = [
    "BootstrapRecipe",
    "GitInitPreparer",
    "NoopPreparer",
    "PrivilegedBootstrap",
    "WorkspacePreparer",
]


@runtime_checkable
class WorkspacePreparer(Protocol):
    """Readies a workspace before execution. Must be idempotent and raise on failure."""

    def prepare(self, workspace: Workspace) -> None: ...


class BootstrapRecipe(Enum):
    """Fixed argv tails the privileged tier may run. Nothing else is accepted."""

    GIT_INIT = ("init", "--quiet")


@dataclass(frozen=True, slots=True)
class PrivilegedBootstrap:
    """Raw repository creation capability. Never exposed through the tool gateway."""

    git_executable: str = "git"
    timeout_seconds: float = DEFAULT_BOOTSTRAP_TIMEOUT_SECONDS

    def ensure_directory(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise WorkspacePreparationError(
                f"cannot create workspace directory {path}: {exc}"
            ) from exc

    def run(self, recipe: BootstrapRecipe, *, cwd: Path) -> ToolResult:
        if not isinstance(recipe, BootstrapRecipe):
            raise ValueError(f"unsupported bootstrap recipe: {recipe!r}")
        env = {"GIT_TERMINAL_PROMPT": "0", "GIT_CONFIG_NOSYSTEM": "1"}
        host_path = os.environ.get("PATH")
        if host_path:
            env["PATH"] = host_path
        return run_command(
            (self.git_executable, *recipe.value),
            cwd=cwd,
            timeout_seconds=self.timeout_seconds,
            env=env,
        )


class NoopPreparer:
    """Preparer for workspaces that are already set up by the caller."""

    def prepare(self, workspace: Workspace) -> None:
        if not workspace.repo_root.is_dir():
            raise WorkspacePreparationError(f"workspace {workspace.repo_root} does not exist")


class GitInitPreparer:
    """Ensure the workspace directory exists and is a git repository."""

    def __init__(
        self, bootstrap: PrivilegedBootstrap | None = None, *, logger: Any | None = None
    ) -> None:
        self._bootstrap = bootstrap if bootstrap is not None else PrivilegedBootstrap()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def prepare(self, workspace: Workspace) -> None:
        root = workspace.repo_root
        self._bootstrap.ensure_directory(root)
        if (root / ".git").exists():
            self._logger.debug("workspace_already_prepared", workspace_id=workspace.id)
            return

        result = self._bootstrap.run(BootstrapRecipe.GIT_INIT, cwd=root)
        self._logger.info(
            "workspace_git_initialized",
            workspace_id=workspace.id,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            stderr_hash=result.stderr_hash,
        )
        if not result.succeeded:
            raise WorkspacePreparationError(
                f"git init failed in {root} (exit_code={result.exit_code}, "
                f"timed_out={result.timed_out})"
            )
