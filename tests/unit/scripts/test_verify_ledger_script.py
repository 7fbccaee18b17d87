"""
jarvis-runtime — verify_ledger script subprocess smoke tests

File: tests/unit/scripts/test_verify_ledger_script.py

Purpose
- Keep the ledger verification entrypoint executable and its exit codes stable.
- Verify `--help`, `--json` output structure, tamper detection, and unreadable inputs.
"""

from __future__ import annotations

import json
import os
import subprocess
import sys
from pathlib import Path

import pytest

from jarvis_runtime.domain.events import Actor, EventType, LedgerEvent
from jarvis_runtime.ledger import Ledger

REPO_ROOT = Path(__file__).resolve().parents[3]
SRC_PATH = REPO_ROOT / "src"
SCRIPT = "scripts/verify_ledger.py"


def _run_script(*args: str, cwd: Path = REPO_ROOT) -> subprocess.CompletedProcess[str]:
    env = os.environ.copy()
    existing_pythonpath = env.get("PYTHONPATH")
    src_pythonpath = str(SRC_PATH)
    env["PYTHONPATH"] = (
        src_pythonpath
        if not existing_pythonpath
        else os.pathsep.join([src_pythonpath, existing_pythonpath])
    )
    env = {key: value for key, value in env.items() if not key.startswith("JARVIS_")}
    return subprocess.run(
        [sys.executable, str(REPO_ROOT / SCRIPT), *args],
        cwd=cwd,
        text=True,
        capture_output=True,
        check=False,
        env=env,
    )


def _render_failure(label: str, completed: subprocess.CompletedProcess[str]) -> str:
    return (
        f"{label} failed with exit code {completed.returncode}\n"
        f"stdout:\n{completed.stdout}\n"
        f"stderr:\n{completed.stderr}\n"
    )


def _write_ledger(path: Path) -> str:
    ledger = Ledger.open(path, fsync=False)
    head = ""
    for state in ("INTAKE", "EXECUTE"):
        head = ledger.append(
            LedgerEvent(
                task_id="task-01ARZ3NDEKTSV4RRFFQ69G5FAV",
                workspace_id="0123456789ab",
                actor=Actor.EXECUTOR,
                event_type=EventType.STATE,
                message=state,
            )
        )
    return head


@pytest.mark.unit
def test_verify_ledger_help_smoke() -> None:
    result = _run_script("--help")

    assert result.returncode == 0, _render_failure("verify_ledger --help", result)
    lowered_output = result.stdout.lower()
    assert "usage" in lowered_output
    assert "--json" in lowered_output
    assert "--config" in lowered_output


@pytest.mark.unit
def test_verify_ledger_json_reports_intact_chain(tmp_path: Path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    head = _write_ledger(ledger_path)

    result = _run_script(str(ledger_path), "--json")

    assert result.returncode == 0, _render_failure("verify_ledger --json", result)
    payload = json.loads(result.stdout)
    assert payload == {
        "event_count": 2,
        "head": head,
        "issue": None,
        "ok": True,
        "path": str(ledger_path.resolve()),
    }


@pytest.mark.unit
def test_verify_ledger_detects_tampering(tmp_path: Path) -> None:
    ledger_path = tmp_path / "ledger.jsonl"
    _write_ledger(ledger_path)
    ledger_path.write_text(
        ledger_path.read_text(encoding="utf-8").replace('"EXECUTE"', '"COMPLETE"'),
        encoding="utf-8",
    )

    result = _run_script(str(ledger_path))

    assert result.returncode == 1, _render_failure("verify_ledger tampered", result)
    assert result.stdout.startswith("BROKEN: ")
    assert "line 2: hash_mismatch" in result.stdout


@pytest.mark.unit
def test_verify_ledger_missing_file_is_exit_2(tmp_path: Path) -> None:
    result = _run_script(str(tmp_path / "absent.jsonl"), "--json")

    assert result.returncode == 2, _render_failure("verify_ledger missing", result)
    payload = json.loads(result.stdout)
    assert payload["ok"] is False
    assert "ledger file not found" in payload["error"]


@pytest.mark.unit
def test_verify_ledger_uses_config_ledger_path(tmp_path: Path) -> None:
    _write_ledger(tmp_path / "state" / "ledger.jsonl")
    config_path = tmp_path / "jarvis.toml"
    config_path.write_text('[ledger]\npath = "state/ledger.jsonl"\n', encoding="utf-8")

    result = _run_script("--config", str(config_path), cwd=tmp_path)

    assert result.returncode == 0, _render_failure("verify_ledger --config", result)
    assert result.stdout.startswith("OK: ")
    assert "events verified: 2" in result.stdout
