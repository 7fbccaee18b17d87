"""Task state machine driver, event recorder, and verification authority."""

from jarvis_runtime.orchestrator.actions import (
    AppliedCheck,
    ExecutorAction,
    PatchAction,
    StatusAction,
    TaskPlan,
    file_contains,
)
from jarvis_runtime.orchestrator.controller import OrchestrationOutcome, TaskOrchestrator, run_task
from jarvis_runtime.orchestrator.recorder import (
    BLOCK_MESSAGE_TEMPLATE,
    PASS_MESSAGE,
    TaskRecorder,
    VerificationAuthority,
    VerificationVerdict,
)

__all__ = [
    "BLOCK_MESSAGE_TEMPLATE",
    "PASS_MESSAGE",
    "AppliedCheck",
    "ExecutorAction",
    "OrchestrationOutcome",
    "PatchAction",
    "StatusAction",
    "TaskOrchestrator",
    "TaskPlan",
    "TaskRecorder",
    "VerificationAuthority",
    "VerificationVerdict",
    "file_contains",
    "run_task",
]
