"""Unit tests for the executor event recorder and the verification authority."""

from __future__ import annotations

from pathlib import Path

import pytest

from jarvis_runtime.domain.events import Actor, EventType, Verdict
from jarvis_runtime.domain.models import TaskState, Workspace
from jarvis_runtime.gateway.runner import ToolResult
from jarvis_runtime.gateway.tools import ToolInvocation, ToolName
from jarvis_runtime.ledger import Ledger, read_events
from jarvis_runtime.orchestrator import (
    PASS_MESSAGE,
    PatchAction,
    StatusAction,
    TaskPlan,
    TaskRecorder,
    VerificationAuthority,
    file_contains,
)
from jarvis_runtime.utils.hashing import sha256_bytes

_TASK = "task-01ARZ3NDEKTSV4RRFFQ69G5FAV"


def _result(
    *,
    exit_code: int = 0,
    stdout: bytes = b"",
    stderr: bytes = b"",
    timed_out: bool = False,
    cancelled: bool = False,
    error: str | None = None,
) -> ToolResult:
    return ToolResult(
        command=("check",),
        cwd=Path("/"),
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        returncode=None if timed_out or cancelled or error else exit_code,
        timed_out=timed_out,
        cancelled=cancelled,
        duration_ms=1.0,
        error=error,
    )


def _invocation(workspace: Workspace) -> ToolInvocation:
    return ToolInvocation(
        tool_name=ToolName.GIT_STATUS,
        command=("git", "status", "--porcelain"),
        cwd=workspace.allowed_root,
        timeout_seconds=10,
    )


@pytest.mark.unit
def test_recorder_binds_foreign_keys_and_policy(tmp_path: Path, workspace: Workspace) -> None:
    ledger = Ledger.open(tmp_path / "ledger.jsonl", fsync=False)
    recorder = TaskRecorder(
        ledger, task_id=_TASK, workspace_id=workspace.id, policy_version="policy-test"
    )

    recorder.state(TaskState.INTAKE)
    recorder.tool_call(_invocation(workspace))
    recorder.tool_result(_invocation(workspace), _result(stdout=b"?? README.md\n"))
    recorder.claim("summarized", diff_hash=sha256_bytes(b""))

    events = list(read_events(ledger.path))
    assert [event.event_type for event in events] == [
        EventType.STATE,
        EventType.TOOL_CALL,
        EventType.TOOL_RESULT,
        EventType.CLAIM,
    ]
    for event in events:
        assert event.task_id == _TASK
        assert event.workspace_id == workspace.id
        assert event.policy_version == "policy-test"
        assert event.actor is Actor.EXECUTOR
    assert events[2].stdout_hash == sha256_bytes(b"?? README.md\n")
    assert events[2].args_hash == events[1].args_hash == _invocation(workspace).args_hash


@pytest.mark.unit
@pytest.mark.parametrize(
    ("result", "message"),
    [
        (_result(exit_code=127, timed_out=True), "timed out"),
        (_result(exit_code=127, cancelled=True), "cancelled"),
        (_result(exit_code=127, error="failed to start 'git'"), "failed to start"),
        (_result(exit_code=2), ""),
    ],
)
def test_tool_result_message_describes_abnormal_exits(
    tmp_path: Path, workspace: Workspace, result: ToolResult, message: str
) -> None:
    ledger = Ledger.open(tmp_path / "ledger.jsonl", fsync=False)
    recorder = TaskRecorder(ledger, task_id=_TASK, workspace_id=workspace.id)
    recorder.tool_result(_invocation(workspace), result)

    (event,) = list(read_events(ledger.path))
    assert event.message == message
    assert event.exit_code == result.exit_code


@pytest.mark.unit
@pytest.mark.parametrize(
    ("result", "verdict", "message"),
    [
        (_result(exit_code=0, stdout=b"ok"), Verdict.PASS, PASS_MESSAGE),
        (_result(exit_code=1), Verdict.BLOCK, "BLOCK: tests did not pass (exit_code=1)"),
        (
            _result(exit_code=127, timed_out=True),
            Verdict.BLOCK,
            "BLOCK: tests did not pass (exit_code=127)",
        ),
    ],
)
def test_verification_authority_judges_exit_codes(
    tmp_path: Path, workspace: Workspace, result: ToolResult, verdict: Verdict, message: str
) -> None:
    ledger = Ledger.open(tmp_path / "ledger.jsonl", fsync=False)
    authority = VerificationAuthority(ledger, task_id=_TASK, workspace_id=workspace.id)

    judged = authority.judge(result)

    assert judged.verdict is verdict
    assert judged.passed is (verdict is Verdict.PASS)
    assert judged.message == message
    (event,) = list(read_events(ledger.path))
    assert event.actor is Actor.VERIFIER
    assert event.event_type is EventType.VERIFY
    assert event.message == message
    assert event.exit_code == result.exit_code
    assert event.stdout_hash == result.stdout_hash
    assert event.event_hash == judged.event_hash


@pytest.mark.unit
def test_file_contains_predicate(workspace: Workspace) -> None:
    (workspace.repo_root / "README.md").write_text("# demo\n", encoding="utf-8")

    assert file_contains("README.md", "# demo")(workspace)
    assert not file_contains("README.md", "# other")(workspace)
    assert not file_contains("missing.md", "# demo")(workspace)
    assert not file_contains("../outside.md", "# demo")(workspace)
    with pytest.raises(ValueError):
        file_contains("README.md", "")


@pytest.mark.unit
def test_actions_report_idempotence(workspace: Workspace) -> None:
    assert not PatchAction("--- a/x\n+++ b/x\n").already_applied(workspace)
    assert PatchAction("--- a/x\n+++ b/x\n", applied_check=lambda _: True).already_applied(
        workspace
    )
    assert not StatusAction().already_applied(workspace)
    with pytest.raises(ValueError, match="must not be empty"):
        PatchAction("  ")


@pytest.mark.unit
def test_task_plan_requires_claim_message(tmp_path: Path) -> None:
    plan = TaskPlan(claim_message="done", verification_script=tmp_path / "v.sh")
    assert plan.actions == ()
    with pytest.raises(ValueError, match="claim_message"):
        TaskPlan(claim_message=" ", verification_script=tmp_path / "v.sh")
