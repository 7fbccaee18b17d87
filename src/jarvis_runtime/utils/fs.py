"""
jarvis-runtime — filesystem utilities

File: src/jarvis_runtime/utils/fs.py

Purpose
- Resolve paths and test containment by path segments, never by string prefix.
- Create parent directories for append-only files.

Functional requirements
- ``/foo`` is not treated as a parent of ``/foobar``.
- Containment works for paths that do not exist yet.
"""

from __future__ import annotations

import os
from pathlib import Path

PathLike = str | os.PathLike[str]

__all__ = [
    "ensure_parent_dir",
    "is_within",
    "resolve_path",
]


def resolve_path(path: PathLike, *, base: PathLike | None = None) -> Path:
    """
    Return an absolute, normalized path with symlinks resolved where they exist.

    Relative paths are anchored at ``base`` when given, else at the process working
    directory.
    """

    candidate = Path(path).expanduser()
    if not candidate.is_absolute() and base is not None:
        candidate = Path(base).expanduser() / candidate
    return candidate.resolve(strict=False)


def is_within(child: PathLike, parent: PathLike) -> bool:
    """Return ``True`` if resolved ``child`` equals or descends from resolved ``parent``."""

    return _is_relative_to(resolve_path(child), resolve_path(parent))


def ensure_parent_dir(path: PathLike) -> Path:
    """Create the parent directory of ``path`` if needed and return the parent."""

    parent = Path(path).parent
    parent.mkdir(parents=True, exist_ok=True)
    return parent


def _is_relative_to(child: Path, parent: Path) -> bool:
    try:
        child.relative_to(parent)
    except ValueError:
        return False
    return True
