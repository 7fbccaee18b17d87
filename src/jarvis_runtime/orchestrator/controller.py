"""
jarvis-runtime — task orchestrator

File: src/jarvis_runtime/orchestrator/controller.py

Purpose
- Drive one task through INTAKE -> EXECUTE -> VERIFY -> COMPLETE/FAILED, recording
  every transition and every tool call on the ledger.

Functional requirements
- A STATE event is durable before the in-memory state changes.
- COMPLETE is reachable only after the verification authority recorded PASS.
- BLOCK records FAILED and raises ``VerificationBlockedError``; it is never retried.
- Any other failure records FAILED (when the task is not already terminal) and
  re-raises. A ledger failure aborts immediately without further writes.

Non-functional requirements
- Decision logs go through ``structlog`` with task/workspace correlation bound.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import structlog

from jarvis_runtime.config.loader import load_config
from jarvis_runtime.config.schema import assert_valid_config
from jarvis_runtime.constants import POLICY_VERSION
from jarvis_runtime.domain.errors import (
    InvalidTransitionError,
    LedgerError,
    VerificationBlockedError,
    WorkspacePreparationError,
)
from jarvis_runtime.domain.models import Task, TaskState, Workspace, assert_transition
from jarvis_runtime.gateway.bootstrap import (
    GitInitPreparer,
    PrivilegedBootstrap,
    WorkspacePreparer,
)
from jarvis_runtime.gateway.tools import ToolGateway, ToolName
from jarvis_runtime.gateway.workspace import open_workspace
from jarvis_runtime.ledger.chain import Ledger
from jarvis_runtime.observability.logging import correlation_scope, setup_logging, shutdown_logging
from jarvis_runtime.orchestrator.actions import TaskPlan
from jarvis_runtime.orchestrator.recorder import TaskRecorder, VerificationAuthority
from jarvis_runtime.utils.concurrency import CancellationToken
from jarvis_runtime.utils.fs import PathLike

__all__ = ["OrchestrationOutcome", "TaskOrchestrator", "run_task"]


@dataclass(frozen=True, slots=True)
class OrchestrationOutcome:
    """Result of a task that reached COMPLETE."""

    task: Task
    workspace: Workspace
    state: TaskState
    claim_event_hash: str
    verify_event_hash: str
    ledger_head: str


class TaskOrchestrator:
    """State machine driver binding a ledger, a gateway, and an INTAKE preparer."""

    def __init__(
        self,
        ledger: Ledger,
        gateway: ToolGateway,
        preparer: WorkspacePreparer,
        *,
        policy_version: str = POLICY_VERSION,
        logger: Any | None = None,
    ) -> None:
        self._ledger = ledger
        self._gateway = gateway
        self._preparer = preparer
        self._policy_version = policy_version
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def workspace(self) -> Workspace:
        return self._gateway.workspace

    def run(
        self,
        task: Task | str,
        plan: TaskPlan,
        *,
        cancel_token: CancellationToken | None = None,
    ) -> OrchestrationOutcome:
        """Run ``plan`` for ``task`` and return the outcome once the task is COMPLETE."""

        if isinstance(task, str):
            task = Task.new(task)
        if task.state is not TaskState.INTAKE:
            raise InvalidTransitionError(
                f"task {task.id} must start in {TaskState.INTAKE}, found {task.state}"
            )

        workspace = self.workspace
        recorder = TaskRecorder(
            self._ledger,
            task_id=task.id,
            workspace_id=workspace.id,
            policy_version=self._policy_version,
        )
        authority = VerificationAuthority(
            self._ledger,
            task_id=task.id,
            workspace_id=workspace.id,
            policy_version=self._policy_version,
        )

        with correlation_scope(task_id=task.id, workspace_id=workspace.id):
            self._logger.info(
                "orchestrator_task_started",
                task_id=task.id,
                workspace_id=workspace.id,
                action_count=len(plan.actions),
            )
            try:
                return self._drive(task, plan, recorder, authority, cancel_token)
            except LedgerError as exc:
                self._logger.error(
                    "orchestrator_ledger_failure",
                    task_id=task.id,
                    state=task.state.value,
                    error=str(exc),
                )
                raise
            except Exception as exc:
                self._record_failure(task, recorder, exc)
                raise

    # ------------------------
    # Phases
    # ------------------------

    def _drive(
        self,
        task: Task,
        plan: TaskPlan,
        recorder: TaskRecorder,
        authority: VerificationAuthority,
        cancel_token: CancellationToken | None,
    ) -> OrchestrationOutcome:
        recorder.state(TaskState.INTAKE)
        self._prepare()

        self._transition(task, recorder, TaskState.EXECUTE)
        claim_event_hash = self._execute(plan, recorder, cancel_token)

        self._transition(task, recorder, TaskState.VERIFY)
        _check_cancelled(cancel_token)
        invocation = self._gateway.verification_invocation(plan.verification_script)
        result = recorder.invoke(self._gateway, invocation, cancel_token=cancel_token)
        if result.cancelled:
            result.raise_for_status(invocation.tool_name.value)

        verdict = authority.judge(result)
        if not verdict.passed:
            self._transition(task, recorder, TaskState.FAILED)
            raise VerificationBlockedError(
                verdict.message,
                exit_code=verdict.exit_code,
                verify_event_hash=verdict.event_hash,
            )

        self._transition(task, recorder, TaskState.COMPLETE)
        return OrchestrationOutcome(
            task=task,
            workspace=self.workspace,
            state=task.state,
            claim_event_hash=claim_event_hash,
            verify_event_hash=verdict.event_hash,
            ledger_head=self._ledger.head,
        )

    def _prepare(self) -> None:
        workspace = self.workspace
        try:
            self._preparer.prepare(workspace)
        except WorkspacePreparationError:
            raise
        except Exception as exc:
            raise WorkspacePreparationError(
                f"preparing workspace {workspace.repo_root} failed: {exc}"
            ) from exc

    def _execute(
        self,
        plan: TaskPlan,
        recorder: TaskRecorder,
        cancel_token: CancellationToken | None,
    ) -> str:
        workspace = self.workspace
        for index, action in enumerate(plan.actions):
            _check_cancelled(cancel_token)
            invocation = action.build(self._gateway)
            result = recorder.invoke(self._gateway, invocation, cancel_token=cancel_token)
            if result.succeeded:
                continue
            if not result.cancelled and action.already_applied(workspace):
                self._logger.info(
                    "orchestrator_action_tolerated",
                    task_id=recorder.task_id,
                    action_index=index,
                    tool_name=invocation.tool_name.value,
                    exit_code=result.exit_code,
                )
                continue
            result.raise_for_status(invocation.tool_name.value)

        _check_cancelled(cancel_token)
        diff_result = recorder.invoke(
            self._gateway, self._gateway.diff_invocation(), cancel_token=cancel_token
        )
        diff_result.raise_for_status(ToolName.GIT_DIFF.value)
        return recorder.claim(plan.claim_message, diff_hash=diff_result.stdout_hash)

    # ------------------------
    # State bookkeeping
    # ------------------------

    def _transition(self, task: Task, recorder: TaskRecorder, target: TaskState) -> None:
        previous = task.state
        assert_transition(previous, target)
        event_hash = recorder.state(target)
        task.advance(target)
        self._logger.info(
            "orchestrator_transition",
            task_id=task.id,
            from_state=previous.value,
            to_state=target.value,
            event_hash=event_hash,
        )

    def _record_failure(self, task: Task, recorder: TaskRecorder, exc: Exception) -> None:
        if task.is_terminal:
            return
        self._logger.warning(
            "orchestrator_task_failed",
            task_id=task.id,
            state=task.state.value,
            error_type=type(exc).__name__,
            failure_kind=str(getattr(exc, "kind", "unknown")),
        )
        self._transition(task, recorder, TaskState.FAILED)


def _check_cancelled(cancel_token: CancellationToken | None) -> None:
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()


def run_task(
    task_text: str,
    workspace_path: PathLike,
    plan: TaskPlan,
    *,
    config: Mapping[str, object] | None = None,
    preparer: WorkspacePreparer | None = None,
    allowed_root: PathLike | None = None,
    cancel_token: CancellationToken | None = None,
) -> OrchestrationOutcome:
    """
    Wire a ledger, gateway, and logging from config and run one task.

    ``config`` defaults to ``load_config()``. The plan's verification script is
    registered with the gateway alongside any configured scripts. Without an explicit
    ``preparer`` the workspace is initialized as a git repository.
    """

    effective = assert_valid_config(config) if config is not None else load_config()
    task = Task.new(task_text)
    log_handle = setup_logging(effective["observability"], task_id=task.id)
    try:
        with correlation_scope(task_id=task.id):
            workspace = open_workspace(workspace_path, allowed_root=allowed_root)
            ledger_cfg = effective["ledger"]
            gateway_cfg = effective["gateway"]
            ledger = Ledger.open(ledger_cfg["path"], fsync=ledger_cfg["fsync"])
            gateway = ToolGateway(
                workspace,
                verification_scripts=(
                    *gateway_cfg["verification_scripts"],
                    plan.verification_script,
                ),
                git_executable=gateway_cfg["git_executable"],
                git_timeout_seconds=gateway_cfg["git_timeout_seconds"],
                verify_timeout_seconds=gateway_cfg["verify_timeout_seconds"],
                inherit_host_env=gateway_cfg["inherit_host_env"],
            )
            if preparer is None:
                preparer = GitInitPreparer(
                    PrivilegedBootstrap(git_executable=gateway_cfg["git_executable"])
                )
            orchestrator = TaskOrchestrator(
                ledger, gateway, preparer, policy_version=effective["policy"]["version"]
            )
            return orchestrator.run(task, plan, cancel_token=cancel_token)
    finally:
        shutdown_logging(log_handle)
