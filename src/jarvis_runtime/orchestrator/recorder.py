"""
jarvis-runtime — event recording for one task

File: src/jarvis_runtime/orchestrator/recorder.py

Purpose
- Bind task id, workspace id, and policy version once so every event carries its
  foreign keys, and bracket every gateway call with TOOL_CALL / TOOL_RESULT.
- Host the verification authority: the only component that emits VERIFY.

Functional requirements
- TOOL_CALL is durable before the tool runs; TOOL_RESULT is always written afterwards,
  whatever the outcome.
- Only digests and exit codes reach the ledger, never raw output.
- VERIFY is ``PASS: ...`` for exit code 0 and ``BLOCK: ...`` for anything else.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import structlog

from jarvis_runtime.constants import POLICY_VERSION
from jarvis_runtime.domain.events import Actor, EventType, LedgerEvent, Verdict
from jarvis_runtime.domain.models import TaskState
from jarvis_runtime.gateway.runner import ToolResult
from jarvis_runtime.gateway.tools import ToolGateway, ToolInvocation
from jarvis_runtime.ledger.chain import Ledger
from jarvis_runtime.utils.concurrency import CancellationToken

PASS_MESSAGE = f"{Verdict.PASS}: tests ran and passed; completion allowed"
BLOCK_MESSAGE_TEMPLATE = f"{Verdict.BLOCK}: tests did not pass (exit_code={{exit_code}})"

__all__ = [
    "BLOCK_MESSAGE_TEMPLATE",
    "PASS_MESSAGE",
    "TaskRecorder",
    "VerificationAuthority",
    "VerificationVerdict",
]


class TaskRecorder:
    """Executor-side event writer for a single task on a single workspace."""

    def __init__(
        self,
        ledger: Ledger,
        *,
        task_id: str,
        workspace_id: str,
        policy_version: str = POLICY_VERSION,
    ) -> None:
        self._ledger = ledger
        self._task_id = task_id
        self._workspace_id = workspace_id
        self._policy_version = policy_version

    @property
    def task_id(self) -> str:
        return self._task_id

    @property
    def workspace_id(self) -> str:
        return self._workspace_id

    def state(self, state: TaskState) -> str:
        return self._append(EventType.STATE, message=TaskState(state).value)

    def tool_call(self, invocation: ToolInvocation) -> str:
        return self._append(
            EventType.TOOL_CALL,
            tool_name=invocation.tool_name.value,
            args_hash=invocation.args_hash,
        )

    def tool_result(self, invocation: ToolInvocation, result: ToolResult) -> str:
        message = ""
        if result.timed_out:
            message = "timed out"
        elif result.cancelled:
            message = "cancelled"
        elif result.error is not None:
            message = "failed to start"
        return self._append(
            EventType.TOOL_RESULT,
            message=message,
            tool_name=invocation.tool_name.value,
            args_hash=invocation.args_hash,
            stdout_hash=result.stdout_hash,
            stderr_hash=result.stderr_hash,
            exit_code=result.exit_code,
        )

    def claim(self, message: str, *, diff_hash: str | None = None) -> str:
        return self._append(EventType.CLAIM, message=message, diff_hash=diff_hash)

    def invoke(
        self,
        gateway: ToolGateway,
        invocation: ToolInvocation,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> ToolResult:
        """Record TOOL_CALL, run the invocation, record TOOL_RESULT, return the result."""
        self.tool_call(invocation)
        result = gateway.execute(invocation, cancel_token=cancel_token)
        self.tool_result(invocation, result)
        return result

    def _append(self, event_type: EventType, **fields: Any) -> str:
        return self._ledger.append(
            LedgerEvent(
                task_id=self._task_id,
                workspace_id=self._workspace_id,
                actor=Actor.EXECUTOR,
                event_type=event_type,
                policy_version=self._policy_version,
                **fields,
            )
        )


@dataclass(frozen=True, slots=True)
class VerificationVerdict:
    verdict: Verdict
    message: str
    exit_code: int
    event_hash: str

    @property
    def passed(self) -> bool:
        return self.verdict is Verdict.PASS


class VerificationAuthority:
    """Judges a verification run and records the verdict as the ``verifier`` actor."""

    def __init__(
        self,
        ledger: Ledger,
        *,
        task_id: str,
        workspace_id: str,
        policy_version: str = POLICY_VERSION,
        logger: Any | None = None,
    ) -> None:
        self._ledger = ledger
        self._task_id = task_id
        self._workspace_id = workspace_id
        self._policy_version = policy_version
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    def judge(self, result: ToolResult) -> VerificationVerdict:
        # Only a clean exit passes; timeouts and cancellations report 127.
        if result.succeeded:
            verdict = Verdict.PASS
            message = PASS_MESSAGE
        else:
            verdict = Verdict.BLOCK
            message = BLOCK_MESSAGE_TEMPLATE.format(exit_code=result.exit_code)

        event_hash = self._ledger.append(
            LedgerEvent(
                task_id=self._task_id,
                workspace_id=self._workspace_id,
                actor=Actor.VERIFIER,
                event_type=EventType.VERIFY,
                message=message,
                stdout_hash=result.stdout_hash,
                stderr_hash=result.stderr_hash,
                exit_code=result.exit_code,
                policy_version=self._policy_version,
            )
        )
        self._logger.info(
            "verification_verdict",
            task_id=self._task_id,
            verdict=verdict.value,
            exit_code=result.exit_code,
            timed_out=result.timed_out,
            event_hash=event_hash,
        )
        return VerificationVerdict(
            verdict=verdict, message=message, exit_code=result.exit_code, event_hash=event_hash
        )
