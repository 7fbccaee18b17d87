"""Scoped tool gateway: workspace resolution, bounded subprocesses, bootstrap tier."""

from jarvis_runtime.gateway.bootstrap import (
    BootstrapRecipe,
    GitInitPreparer,
    NoopPreparer,
    PrivilegedBootstrap,
    WorkspacePreparer,
)
from jarvis_runtime.gateway.runner import ToolResult, run_command
from jarvis_runtime.gateway.tools import ToolGateway, ToolInvocation, ToolName
from jarvis_runtime.gateway.workspace import is_in_scope, open_workspace, resolve_in_scope

__all__ = [
    "BootstrapRecipe",
    "GitInitPreparer",
    "NoopPreparer",
    "PrivilegedBootstrap",
    "ToolGateway",
    "ToolInvocation",
    "ToolName",
    "ToolResult",
    "WorkspacePreparer",
    "is_in_scope",
    "open_workspace",
    "resolve_in_scope",
    "run_command",
]
