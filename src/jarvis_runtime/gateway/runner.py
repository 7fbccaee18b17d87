"""Bounded subprocess execution with process-group termination and normalized results."""

from __future__ import annotations

import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Final

from jarvis_runtime.constants import UNREPORTED_EXIT_CODE
from jarvis_runtime.domain.errors import (
    TaskCancelledError,
    TimeoutExceededError,
    ToolExecutionFailedError,
)
from jarvis_runtime.utils.hashing import sha256_bytes

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from jarvis_runtime.utils.concurrency import CancellationToken

_POLL_INTERVAL_SECONDS: Final[float] = 0.05
_REAP_TIMEOUT_SECONDS: Final[float] = 5.0


@dataclass(frozen=True, slots=True)
class ToolResult:
    """Outcome of one subprocess invocation.

    ``exit_code`` is normalized: a child that was killed, timed out, was cancelled, or
    never started reports ``UNREPORTED_EXIT_CODE``. ``returncode`` keeps the raw value.
    """

    command: tuple[str, ...]
    cwd: Path
    stdout: bytes
    stderr: bytes
    exit_code: int
    returncode: int | None
    timed_out: bool
    cancelled: bool
    duration_ms: float
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return (
            not self.timed_out
            and not self.cancelled
            and self.error is None
            and self.exit_code == 0
        )

    @property
    def stdout_hash(self) -> str:
        return sha256_bytes(self.stdout)

    @property
    def stderr_hash(self) -> str:
        return sha256_bytes(self.stderr)

    def raise_for_status(self, tool_name: str | None = None) -> ToolResult:
        """Return ``self`` on success, otherwise raise the matching gateway error."""
        label = tool_name or (self.command[0] if self.command else "command")
        if self.cancelled:
            raise TaskCancelledError(f"{label} was cancelled after {self.duration_ms:.0f}ms")
        if self.timed_out:
            raise TimeoutExceededError(
                f"{label} exceeded its time limit after {self.duration_ms:.0f}ms", result=self
            )
        if self.error is not None:
            raise ToolExecutionFailedError(f"{label} could not run: {self.error}", result=self)
        if self.exit_code != 0:
            raise ToolExecutionFailedError(
                f"{label} failed with exit_code={self.exit_code}", result=self
            )
        return self


def run_command(
    command: Sequence[str],
    *,
    cwd: Path,
    timeout_seconds: float,
    input_bytes: bytes | None = None,
    env: Mapping[str, str] | None = None,
    cancel_token: CancellationToken | None = None,
) -> ToolResult:
    """
    Run ``command`` (argv, no shell) and wait for it under a hard wall-clock bound.

    The child runs in its own session so that on timeout or cancellation the whole
    process group is killed and reaped before this function returns. Partial output
    captured up to that point is kept.
    """

    argv = _normalize_command(command)
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0")

    started = time.perf_counter()
    try:
        process = subprocess.Popen(
            list(argv),
            cwd=cwd,
            stdin=subprocess.PIPE if input_bytes is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=None if env is None else dict(env),
            start_new_session=True,
        )
    except OSError as exc:
        return ToolResult(
            command=argv,
            cwd=cwd,
            stdout=b"",
            stderr=b"",
            exit_code=UNREPORTED_EXIT_CODE,
            returncode=None,
            timed_out=False,
            cancelled=False,
            duration_ms=_elapsed_ms(started),
            error=f"failed to start {argv[0]!r}: {exc}",
        )

    deadline = started + float(timeout_seconds)
    pending_input = input_bytes
    timed_out = False
    cancelled = False
    stdout = b""
    stderr = b""
    while True:
        if cancel_token is not None and cancel_token.is_cancelled:
            cancelled = True
            break
        remaining = deadline - time.perf_counter()
        if remaining <= 0:
            timed_out = True
            break
        try:
            stdout, stderr = process.communicate(
                input=pending_input, timeout=min(_POLL_INTERVAL_SECONDS, remaining)
            )
            break
        except subprocess.TimeoutExpired:
            # Input is buffered by the first call; retries must not pass it again.
            pending_input = None

    if timed_out or cancelled:
        stdout, stderr = _terminate_and_reap(process)

    returncode = process.returncode
    return ToolResult(
        command=argv,
        cwd=cwd,
        stdout=stdout or b"",
        stderr=stderr or b"",
        exit_code=_normalize_exit_code(returncode, abnormal=timed_out or cancelled),
        returncode=returncode,
        timed_out=timed_out,
        cancelled=cancelled,
        duration_ms=_elapsed_ms(started),
    )


def _terminate_and_reap(process: subprocess.Popen[bytes]) -> tuple[bytes, bytes]:
    _kill_process_group(process)
    try:
        stdout, stderr = process.communicate(timeout=_REAP_TIMEOUT_SECONDS)
    except subprocess.TimeoutExpired:
        # A descendant escaped the group and still holds the pipes open.
        for stream in (process.stdin, process.stdout, process.stderr):
            if stream is not None:
                stream.close()
        process.kill()
        process.wait()
        return b"", b""
    return stdout or b"", stderr or b""


def _kill_process_group(process: subprocess.Popen[bytes]) -> None:
    if hasattr(os, "killpg"):
        try:
            os.killpg(process.pid, signal.SIGKILL)
            return
        except (ProcessLookupError, PermissionError):
            pass
    try:
        process.kill()
    except ProcessLookupError:
        return


def _normalize_exit_code(returncode: int | None, *, abnormal: bool) -> int:
    if abnormal or returncode is None or returncode < 0:
        return UNREPORTED_EXIT_CODE
    return returncode


def _normalize_command(command: Sequence[str]) -> tuple[str, ...]:
    if isinstance(command, str) or not isinstance(command, (list, tuple)):
        raise ValueError("command must be a sequence of strings")
    normalized = tuple(str(item) for item in command)
    if not normalized or not normalized[0].strip():
        raise ValueError("command must not be empty")
    return normalized


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


__all__ = ["ToolResult", "run_command"]
