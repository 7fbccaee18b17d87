"""Unit tests for the privileged bootstrap tier and workspace preparers."""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from jarvis_runtime.domain.errors import WorkspacePreparationError
from jarvis_runtime.domain.models import Workspace
from jarvis_runtime.gateway.bootstrap import (
    BootstrapRecipe,
    GitInitPreparer,
    NoopPreparer,
    PrivilegedBootstrap,
    WorkspacePreparer,
)
from jarvis_runtime.gateway.tools import ToolGateway
from jarvis_runtime.gateway.workspace import open_workspace

ScriptFactory = Callable[[str, str], Path]


@pytest.fixture
def recording_git(make_script: ScriptFactory, tmp_path: Path) -> tuple[Path, Path]:
    calls = tmp_path / "git-calls.log"
    script = make_script(
        "recording-git",
        f'printf "%s\\n" "$*" >> "{calls}"\n'
        'if [ "$1" = "init" ]; then mkdir -p .git; fi',
    )
    return script, calls


@pytest.mark.unit
def test_preparers_satisfy_protocol() -> None:
    assert isinstance(GitInitPreparer(), WorkspacePreparer)
    assert isinstance(NoopPreparer(), WorkspacePreparer)


@pytest.mark.unit
def test_gateway_exposes_no_bootstrap_capability(workspace: Workspace) -> None:
    gateway = ToolGateway(workspace)
    public = [name for name in dir(gateway) if not name.startswith("_")]
    assert not any("init" in name or "bootstrap" in name for name in public)


@pytest.mark.unit
def test_git_init_preparer_creates_and_initializes(
    tmp_path: Path, recording_git: tuple[Path, Path]
) -> None:
    script, calls = recording_git
    workspace = open_workspace(tmp_path / "fresh" / "repo")
    preparer = GitInitPreparer(PrivilegedBootstrap(git_executable=str(script)))

    preparer.prepare(workspace)

    assert (workspace.repo_root / ".git").is_dir()
    assert calls.read_text(encoding="utf-8").splitlines() == ["init --quiet"]


@pytest.mark.unit
def test_git_init_preparer_is_idempotent(
    tmp_path: Path, recording_git: tuple[Path, Path]
) -> None:
    script, calls = recording_git
    workspace = open_workspace(tmp_path / "repo")
    preparer = GitInitPreparer(PrivilegedBootstrap(git_executable=str(script)))

    preparer.prepare(workspace)
    preparer.prepare(workspace)

    assert calls.read_text(encoding="utf-8").splitlines() == ["init --quiet"]


@pytest.mark.unit
def test_git_init_failure_raises(tmp_path: Path, make_script: ScriptFactory) -> None:
    failing = make_script("failing-git", "echo nope >&2\nexit 2")
    workspace = open_workspace(tmp_path / "repo")
    preparer = GitInitPreparer(PrivilegedBootstrap(git_executable=str(failing)))

    with pytest.raises(WorkspacePreparationError, match="exit_code=2"):
        preparer.prepare(workspace)


@pytest.mark.unit
def test_ensure_directory_failure_raises(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("x", encoding="utf-8")

    with pytest.raises(WorkspacePreparationError, match="cannot create workspace directory"):
        PrivilegedBootstrap().ensure_directory(blocker / "repo")


@pytest.mark.unit
def test_bootstrap_only_runs_fixed_recipes(tmp_path: Path) -> None:
    with pytest.raises(ValueError, match="unsupported bootstrap recipe"):
        PrivilegedBootstrap().run(("init",), cwd=tmp_path)  # type: ignore[arg-type]
    assert BootstrapRecipe.GIT_INIT.value == ("init", "--quiet")


@pytest.mark.unit
def test_noop_preparer_requires_existing_directory(tmp_path: Path) -> None:
    NoopPreparer().prepare(open_workspace(tmp_path))
    with pytest.raises(WorkspacePreparationError, match="does not exist"):
        NoopPreparer().prepare(open_workspace(tmp_path / "missing"))
