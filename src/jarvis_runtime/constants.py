"""Stable constants shared across the ledger, gateway, and orchestrator."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Governance policy stamped on every ledger event.
POLICY_VERSION: Final[str] = "policy-v0"

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to the process working directory unless overridden).
DEFAULT_LEDGER_PATH: Final[PurePosixPath] = PurePosixPath(".jarvis/ledger.jsonl")
DEFAULT_LOG_DIR: Final[PurePosixPath] = PurePosixPath(".jarvis/logs")

# Subprocess bounds.
DEFAULT_GIT_TIMEOUT_SECONDS: Final[float] = 10.0
DEFAULT_VERIFY_TIMEOUT_SECONDS: Final[float] = 60.0
DEFAULT_BOOTSTRAP_TIMEOUT_SECONDS: Final[float] = 30.0

# Exit code reported for a child that could not report one (killed, timed out, failed to start).
UNREPORTED_EXIT_CODE: Final[int] = 127

# Workspace identifiers are a truncated SHA-256 of the absolute path.
WORKSPACE_ID_LENGTH: Final[int] = 12

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_BOOTSTRAP_TIMEOUT_SECONDS",
    "DEFAULT_GIT_TIMEOUT_SECONDS",
    "DEFAULT_LEDGER_PATH",
    "DEFAULT_LOG_DIR",
    "DEFAULT_VERIFY_TIMEOUT_SECONDS",
    "POLICY_VERSION",
    "UNREPORTED_EXIT_CODE",
    "WORKSPACE_ID_LENGTH",
]
