"""
jarvis-runtime — scoped tool gateway

File: src/jarvis_runtime/gateway/tools.py

Purpose
- Expose the only subprocess primitives an executing agent may use: read-only git
  inspection, patch application, and pre-registered verification scripts.

Functional requirements
- Every primitive is scope-checked before anything runs; a violation raises
  ``ScopeViolationError`` and no process is started.
- Invocations are described by a :class:`ToolInvocation` first so that callers can
  record the argument digest before execution.
- Commands run as argv with no shell, with separate stdout and stderr buffers and a
  hard timeout.

Non-functional requirements
- Raw output is returned to the caller but never logged by this module.
- The child environment carries only ``PATH`` unless host inheritance is enabled.
"""

from __future__ import annotations

import os
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path, PurePosixPath
from typing import Any, Final

import structlog

from jarvis_runtime.constants import DEFAULT_GIT_TIMEOUT_SECONDS, DEFAULT_VERIFY_TIMEOUT_SECONDS
from jarvis_runtime.domain.errors import ScopeViolationError
from jarvis_runtime.domain.models import Workspace
from jarvis_runtime.gateway.runner import ToolResult, run_command
from jarvis_runtime.gateway.workspace import resolve_in_scope
from jarvis_runtime.utils.concurrency import CancellationToken
from jarvis_runtime.utils.fs import PathLike, is_within, resolve_path
from jarvis_runtime.utils.hashing import canonical_json, sha256_bytes, sha256_text

_WINDOWS_ABSOLUTE_PATH_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Za-z]:[\\/]")
_HUNK_HEADER_RE: Final[re.Pattern[str]] = re.compile(r"^@@ -\d+(?:,(\d+))? \+\d+(?:,(\d+))? @@")
_QUOTED_GIT_HEADER_RE: Final[re.Pattern[str]] = re.compile(
    r'("(?:[^"\\]|\\.)*") ("(?:[^"\\]|\\.)*"|\S.*)'
)
_GIT_ENV: Final[dict[str, str]] = {"GIT_TERMINAL_PROMPT": "0", "GIT_CONFIG_NOSYSTEM": "1"}

__all__ = [
    "ToolGateway",
    "ToolInvocation",
    "ToolName",
    "extract_patch_paths",
    "validate_patch_paths",
]


class ToolName(StrEnum):
    """Stable tool identifiers written to ``tool_name`` on ledger events."""

    GIT_STATUS = "git.status"
    GIT_DIFF = "git.diff"
    GIT_APPLY_PATCH = "git.apply_patch"
    RUN_VERIFICATION_SCRIPT = "test.run_script_only"


@dataclass(frozen=True, slots=True)
class ToolInvocation:
    """A scope-checked command ready to run."""

    tool_name: ToolName
    command: tuple[str, ...]
    cwd: Path
    timeout_seconds: float
    input_bytes: bytes | None = None

    @property
    def args_hash(self) -> str:
        """Digest of argv, working directory, and stdin. Never the raw stdin."""
        return sha256_text(
            canonical_json(
                {
                    "tool_name": self.tool_name.value,
                    "argv": list(self.command),
                    "cwd": str(self.cwd),
                    "stdin_sha256": (
                        None if self.input_bytes is None else sha256_bytes(self.input_bytes)
                    ),
                }
            )
        )


class ToolGateway:
    """Scoped subprocess primitives bound to one workspace."""

    def __init__(
        self,
        workspace: Workspace,
        *,
        verification_scripts: Iterable[PathLike] = (),
        git_executable: str = "git",
        git_timeout_seconds: float = DEFAULT_GIT_TIMEOUT_SECONDS,
        verify_timeout_seconds: float = DEFAULT_VERIFY_TIMEOUT_SECONDS,
        env_overrides: Mapping[str, str] | None = None,
        inherit_host_env: bool = False,
        logger: Any | None = None,
    ) -> None:
        if git_timeout_seconds <= 0:
            raise ValueError("git_timeout_seconds must be > 0")
        if verify_timeout_seconds <= 0:
            raise ValueError("verify_timeout_seconds must be > 0")
        if not git_executable.strip():
            raise ValueError("git_executable must not be empty")

        self._workspace = workspace
        self._git_executable = git_executable
        self._git_timeout_seconds = float(git_timeout_seconds)
        self._verify_timeout_seconds = float(verify_timeout_seconds)
        self._env_overrides = dict(env_overrides or {})
        self._inherit_host_env = bool(inherit_host_env)
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._verification_scripts = frozenset(
            resolve_path(script, base=workspace.repo_root) for script in verification_scripts
        )

    @property
    def workspace(self) -> Workspace:
        return self._workspace

    @property
    def verification_scripts(self) -> frozenset[Path]:
        return self._verification_scripts

    # ------------------------
    # Invocation builders
    # ------------------------

    def status_invocation(self) -> ToolInvocation:
        return self._git_invocation(ToolName.GIT_STATUS, ("status", "--porcelain"))

    def diff_invocation(self) -> ToolInvocation:
        return self._git_invocation(ToolName.GIT_DIFF, ("diff",))

    def apply_patch_invocation(self, patch_text: str) -> ToolInvocation:
        """Build a ``git apply -`` invocation after validating every patch target path."""
        if not patch_text.strip():
            raise ValueError("patch content cannot be empty")
        normalized = patch_text if patch_text.endswith("\n") else f"{patch_text}\n"
        validate_patch_paths(normalized, workspace=self._workspace)
        return self._git_invocation(
            ToolName.GIT_APPLY_PATCH,
            ("apply", "--whitespace=nowarn", "-"),
            input_bytes=normalized.encode("utf-8"),
        )

    def verification_invocation(self, script_path: PathLike) -> ToolInvocation:
        script = resolve_path(script_path, base=self._workspace.repo_root)
        if script not in self._verification_scripts:
            raise ScopeViolationError(
                f"verification script {script} is not registered with this gateway",
                path=str(script),
                allowed_root=str(self._workspace.allowed_root),
            )
        root = resolve_in_scope(self._workspace, self._workspace.allowed_root)
        return ToolInvocation(
            tool_name=ToolName.RUN_VERIFICATION_SCRIPT,
            command=(str(script), str(root)),
            cwd=root,
            timeout_seconds=self._verify_timeout_seconds,
        )

    # ------------------------
    # Execution
    # ------------------------

    def execute(
        self, invocation: ToolInvocation, *, cancel_token: CancellationToken | None = None
    ) -> ToolResult:
        """Run a prepared invocation; the result is returned even when the command failed."""
        cwd = resolve_in_scope(self._workspace, invocation.cwd)
        result = run_command(
            invocation.command,
            cwd=cwd,
            timeout_seconds=invocation.timeout_seconds,
            input_bytes=invocation.input_bytes,
            env=self._build_environment(invocation.tool_name),
            cancel_token=cancel_token,
        )
        self._logger.info(
            "gateway_tool_finished",
            workspace_id=self._workspace.id,
            tool_name=invocation.tool_name.value,
            args_hash=invocation.args_hash,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            cancelled=result.cancelled,
            duration_ms=round(result.duration_ms, 3),
            stdout_hash=result.stdout_hash,
            stderr_hash=result.stderr_hash,
        )
        return result

    def status(self, *, cancel_token: CancellationToken | None = None) -> ToolResult:
        return self.execute(self.status_invocation(), cancel_token=cancel_token)

    def diff(self, *, cancel_token: CancellationToken | None = None) -> ToolResult:
        return self.execute(self.diff_invocation(), cancel_token=cancel_token)

    def apply_patch(
        self, patch_text: str, *, cancel_token: CancellationToken | None = None
    ) -> ToolResult:
        return self.execute(self.apply_patch_invocation(patch_text), cancel_token=cancel_token)

    def run_verification_script(
        self, script_path: PathLike, *, cancel_token: CancellationToken | None = None
    ) -> ToolResult:
        return self.execute(self.verification_invocation(script_path), cancel_token=cancel_token)

    # ------------------------
    # Internal helper routines
    # ------------------------

    def _git_invocation(
        self,
        tool_name: ToolName,
        args: tuple[str, ...],
        *,
        input_bytes: bytes | None = None,
    ) -> ToolInvocation:
        root = resolve_in_scope(self._workspace, self._workspace.allowed_root)
        return ToolInvocation(
            tool_name=tool_name,
            command=(self._git_executable, *args),
            cwd=root,
            timeout_seconds=self._git_timeout_seconds,
            input_bytes=input_bytes,
        )

    def _build_environment(self, tool_name: ToolName) -> dict[str, str]:
        if self._inherit_host_env:
            merged = dict(os.environ)
        else:
            merged = {}
            host_path = os.environ.get("PATH")
            if host_path:
                merged["PATH"] = host_path
        if tool_name is not ToolName.RUN_VERIFICATION_SCRIPT:
            merged.update(_GIT_ENV)
        merged.update(self._env_overrides)
        return merged


def extract_patch_paths(unified_diff: str) -> tuple[str, ...]:
    """
    Return every target path named in a unified diff's file headers.

    Hunk bodies are skipped using the line counts of their ``@@`` headers, so removed
    or added lines that happen to start with ``--- `` or ``+++ `` are never read as paths.
    """
    paths: list[str] = []
    old_remaining = 0
    new_remaining = 0
    for line in unified_diff.splitlines():
        if old_remaining > 0 or new_remaining > 0:
            if line.startswith("-"):
                old_remaining -= 1
            elif line.startswith("+"):
                new_remaining -= 1
            elif not line.startswith("\\"):
                old_remaining -= 1
                new_remaining -= 1
            continue

        hunk = _HUNK_HEADER_RE.match(line)
        if hunk is not None:
            old_remaining = _hunk_length(hunk.group(1))
            new_remaining = _hunk_length(hunk.group(2))
            continue

        if line.startswith("diff --git "):
            paths.extend(_split_git_header(line[len("diff --git ") :]))
            continue

        candidate: str | None = None
        if line.startswith("--- ") or line.startswith("+++ "):
            candidate = line[4:].split("\t", 1)[0].strip()
        else:
            for prefix in ("rename from ", "rename to ", "copy from ", "copy to "):
                if line.startswith(prefix):
                    candidate = line[len(prefix) :].strip()
                    break

        if candidate is None or candidate == "/dev/null":
            continue
        paths.append(candidate)
    return tuple(paths)


def validate_patch_paths(unified_diff: str, *, workspace: Workspace) -> tuple[str, ...]:
    """
    Reject patches that target absolute paths, ``..`` traversal, ``.git`` internals,
    or anything outside the workspace's allowed root. Returns the normalized targets.
    """

    normalized_paths: list[str] = []
    for raw_path in extract_patch_paths(unified_diff):
        normalized = _normalize_patch_path(raw_path)
        _assert_patch_path_allowed(raw_path=raw_path, normalized_path=normalized)
        # git apply resolves targets against the repository root.
        target = workspace.repo_root / normalized
        if not is_within(target, workspace.allowed_root):
            raise ScopeViolationError(
                f"patch path {raw_path!r} is outside allowed root {workspace.allowed_root}",
                path=str(target),
                allowed_root=str(workspace.allowed_root),
            )
        normalized_paths.append(normalized)
    return tuple(normalized_paths)


def _normalize_patch_path(patch_path: str) -> str:
    normalized = patch_path.strip()
    if normalized.startswith('"') and normalized.endswith('"') and len(normalized) >= 2:
        normalized = normalized[1:-1]

    while normalized.startswith("./"):
        normalized = normalized[2:]

    if normalized.startswith("a/") or normalized.startswith("b/"):
        normalized = normalized[2:]

    return PurePosixPath(normalized).as_posix()


def _assert_patch_path_allowed(*, raw_path: str, normalized_path: str) -> None:
    if normalized_path in {"", "."}:
        raise ScopeViolationError(f"patch path {raw_path!r} is empty", path=raw_path)

    if PurePosixPath(normalized_path).is_absolute() or _WINDOWS_ABSOLUTE_PATH_RE.match(
        normalized_path
    ):
        raise ScopeViolationError(
            f"patch path {raw_path!r} is absolute; only relative paths are allowed",
            path=raw_path,
        )

    parts = PurePosixPath(normalized_path).parts
    if ".." in parts:
        raise ScopeViolationError(
            f"patch path {raw_path!r} uses '..' traversal", path=raw_path
        )

    if ".git" in parts:
        raise ScopeViolationError(f"patch path {raw_path!r} targets .git", path=raw_path)


def _hunk_length(count: str | None) -> int:
    # An omitted count in "@@ -a +c @@" means one line.
    return 1 if count is None else int(count)


def _split_git_header(rest: str) -> tuple[str, ...]:
    """Split the ``a/<old> b/<new>`` pair of a ``diff --git`` line."""
    rest = rest.strip()
    if rest.startswith('"'):
        quoted = _QUOTED_GIT_HEADER_RE.fullmatch(rest)
        if quoted is None:
            return (rest,)
        return (quoted.group(1), quoted.group(2))

    # Both sides normally name the same path, so prefer the split in the middle.
    middle = (len(rest) - 1) // 2
    if rest[middle : middle + 3] == " b/":
        return (rest[:middle], rest[middle + 1 :])
    old, sep, new = rest.partition(" b/")
    if not sep:
        return (rest,)
    return (old, f"b/{new}")
