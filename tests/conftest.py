"""Shared fixtures: isolated git environment, executable script factory, workspaces."""

from __future__ import annotations

import stat
from collections.abc import Callable
from pathlib import Path

import pytest

from jarvis_runtime.domain.models import Workspace
from jarvis_runtime.gateway.workspace import open_workspace

ScriptFactory = Callable[[str, str], Path]


@pytest.fixture
def isolated_git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    home = tmp_path / "home"
    xdg = tmp_path / "xdg"
    home.mkdir()
    xdg.mkdir()

    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(xdg))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


@pytest.fixture
def make_script(tmp_path: Path) -> ScriptFactory:
    """Write an executable ``/bin/sh`` script under ``tmp_path/bin`` and return its path."""

    bin_dir = tmp_path / "bin"
    bin_dir.mkdir(exist_ok=True)

    def _make(name: str, body: str) -> Path:
        script = bin_dir / name
        script.write_text(f"#!/bin/sh\n{body}\n", encoding="utf-8")
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return script

    return _make


@pytest.fixture
def workspace(tmp_path: Path) -> Workspace:
    repo = tmp_path / "repo"
    repo.mkdir()
    return open_workspace(repo)
