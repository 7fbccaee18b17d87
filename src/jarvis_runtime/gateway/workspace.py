"""Workspace resolution and segment-aware scope checks."""

from __future__ import annotations

from pathlib import Path

from jarvis_runtime.domain import ids as domain_ids
from jarvis_runtime.domain.errors import ScopeViolationError
from jarvis_runtime.domain.models import Workspace
from jarvis_runtime.utils.fs import PathLike, is_within, resolve_path

__all__ = ["is_in_scope", "open_workspace", "resolve_in_scope"]


def open_workspace(path: PathLike, *, allowed_root: PathLike | None = None) -> Workspace:
    """
    Resolve ``path`` into a :class:`Workspace` without touching the filesystem.

    ``allowed_root`` defaults to the repository root. A relative ``allowed_root`` is
    anchored at the repository root; one that resolves outside it is rejected.
    """

    repo_root = resolve_path(path)
    scope_root = repo_root if allowed_root is None else resolve_path(allowed_root, base=repo_root)
    if not is_within(scope_root, repo_root):
        raise ScopeViolationError(
            f"allowed_root {scope_root} is outside repository root {repo_root}",
            path=str(scope_root),
            allowed_root=str(repo_root),
        )
    return Workspace(
        id=domain_ids.workspace_id_for_path(repo_root),
        repo_root=repo_root,
        allowed_root=scope_root,
    )


def resolve_in_scope(workspace: Workspace, path: PathLike) -> Path:
    """Return the resolved form of ``path`` or raise ``ScopeViolationError``.

    Relative paths are anchored at ``workspace.allowed_root``. Symlinks that exist are
    followed before the containment check.
    """
    resolved = resolve_path(path, base=workspace.allowed_root)
    if not is_within(resolved, workspace.allowed_root):
        raise ScopeViolationError(
            f"path {resolved} is outside allowed root {workspace.allowed_root}",
            path=str(resolved),
            allowed_root=str(workspace.allowed_root),
        )
    return resolved


def is_in_scope(workspace: Workspace, path: PathLike) -> bool:
    return is_within(resolve_path(path, base=workspace.allowed_root), workspace.allowed_root)
