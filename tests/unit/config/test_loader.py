"""
jarvis-runtime — unit tests for config loader

File: tests/unit/config/test_loader.py

Purpose
- Validate deterministic config loading from defaults, TOML, env overrides, and explicit
  overrides.

What this test file should cover
- Precedence: overrides > env > file > defaults.
- Deterministic env var path mapping and type coercion.
- Path normalization relative to the config file.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

import pytest

from jarvis_runtime.config import (
    ConfigLoadError,
    ConfigValidationError,
    default_config,
    dump_effective_config,
    load_config,
)


def _write_config(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


@pytest.mark.unit
def test_loader_precedence_default_file_env_override(tmp_path: Path) -> None:
    config_path = tmp_path / "jarvis.toml"
    _write_config(config_path, "[gateway]\ngit_timeout_seconds = 4\n")

    file_loaded = load_config(config_path, environ={})
    env_loaded = load_config(
        config_path, environ={"JARVIS_GATEWAY_GIT_TIMEOUT_SECONDS": "6"}
    )
    override_loaded = load_config(
        config_path,
        environ={"JARVIS_GATEWAY_GIT_TIMEOUT_SECONDS": "6"},
        overrides={"gateway.git_timeout_seconds": 7},
    )

    assert file_loaded["gateway"]["git_timeout_seconds"] == 4.0
    assert env_loaded["gateway"]["git_timeout_seconds"] == 6.0
    assert override_loaded["gateway"]["git_timeout_seconds"] == 7.0
    assert file_loaded["gateway"]["verify_timeout_seconds"] == 60.0


@pytest.mark.unit
def test_missing_default_file_uses_builtin_defaults(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    monkeypatch.chdir(tmp_path)
    loaded = load_config(environ={})

    expected = default_config()
    assert loaded["gateway"] == expected["gateway"]
    assert loaded["policy"] == expected["policy"]
    assert loaded["ledger"]["fsync"] is True
    assert loaded["ledger"]["path"] == (tmp_path.resolve() / ".jarvis" / "ledger.jsonl").as_posix()


@pytest.mark.unit
def test_explicit_missing_file_is_an_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigLoadError, match="config file not found"):
        load_config(tmp_path / "missing.toml", environ={})


@pytest.mark.unit
def test_invalid_toml_is_an_error(tmp_path: Path) -> None:
    config_path = tmp_path / "jarvis.toml"
    _write_config(config_path, "[ledger\npath = 1\n")
    with pytest.raises(ConfigLoadError, match="invalid TOML"):
        load_config(config_path, environ={})


@pytest.mark.unit
def test_env_coercion_for_each_value_kind(tmp_path: Path) -> None:
    config_path = tmp_path / "jarvis.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path,
        environ={
            "JARVIS_LEDGER_FSYNC": "off",
            "JARVIS_GATEWAY_INHERIT_HOST_ENV": "yes",
            "JARVIS_GATEWAY_VERIFY_TIMEOUT_SECONDS": "12.5",
            "JARVIS_GATEWAY_VERIFICATION_SCRIPTS": os.pathsep.join(
                ["scripts/check.sh", " scripts/lint.sh "]
            ),
            "JARVIS_OBSERVABILITY_LOG_LEVEL": "DEBUG",
            "JARVIS_POLICY_VERSION": "policy-v1",
        },
    )

    assert loaded["ledger"]["fsync"] is False
    assert loaded["gateway"]["inherit_host_env"] is True
    assert loaded["gateway"]["verify_timeout_seconds"] == 12.5
    assert loaded["gateway"]["verification_scripts"] == ["scripts/check.sh", "scripts/lint.sh"]
    assert loaded["observability"]["log_level"] == "DEBUG"
    assert loaded["policy"]["version"] == "policy-v1"


@pytest.mark.unit
@pytest.mark.parametrize(
    ("name", "value", "message"),
    [
        ("JARVIS_LEDGER_FSYNC", "maybe", "must be a boolean"),
        ("JARVIS_GATEWAY_GIT_TIMEOUT_SECONDS", "ten", "must be a number"),
        ("JARVIS_META_SCHEMA_VERSION", "one", "must be an integer"),
    ],
)
def test_env_coercion_errors(tmp_path: Path, name: str, value: str, message: str) -> None:
    config_path = tmp_path / "jarvis.toml"
    _write_config(config_path, "")
    with pytest.raises(ConfigLoadError, match=message):
        load_config(config_path, environ={name: value})


@pytest.mark.unit
def test_env_values_are_still_validated(tmp_path: Path) -> None:
    config_path = tmp_path / "jarvis.toml"
    _write_config(config_path, "")
    with pytest.raises(ConfigValidationError, match="gateway.git_timeout_seconds"):
        load_config(config_path, environ={"JARVIS_GATEWAY_GIT_TIMEOUT_SECONDS": "-1"})


@pytest.mark.unit
def test_unrelated_env_vars_are_ignored(tmp_path: Path) -> None:
    config_path = tmp_path / "jarvis.toml"
    _write_config(config_path, "")
    loaded = load_config(
        config_path, environ={"JARVIS_UNKNOWN_KEY": "x", "PATH": "/usr/bin"}
    )
    assert loaded == load_config(config_path, environ={})


@pytest.mark.unit
def test_paths_are_normalized_relative_to_config_file(tmp_path: Path) -> None:
    config_dir = tmp_path / "cfg"
    config_path = config_dir / "jarvis.toml"
    _write_config(
        config_path,
        '[ledger]\npath = "../state/ledger.jsonl"\n\n[observability]\nlog_dir = "logs"\n',
    )

    loaded = load_config(config_path, environ={})

    assert loaded["ledger"]["path"] == (tmp_path.resolve() / "state" / "ledger.jsonl").as_posix()
    assert loaded["observability"]["log_dir"] == (config_dir.resolve() / "logs").as_posix()


@pytest.mark.unit
def test_absolute_paths_are_kept(tmp_path: Path) -> None:
    config_path = tmp_path / "jarvis.toml"
    absolute = (tmp_path / "elsewhere" / "ledger.jsonl").as_posix()
    _write_config(config_path, f'[ledger]\npath = "{absolute}"\n')

    assert load_config(config_path, environ={})["ledger"]["path"] == absolute


@pytest.mark.unit
def test_override_mapping_and_bad_keys(tmp_path: Path) -> None:
    config_path = tmp_path / "jarvis.toml"
    _write_config(config_path, "")

    loaded = load_config(
        config_path, environ={}, overrides={"observability": {"log_to_stdout": True}}
    )
    assert loaded["observability"]["log_to_stdout"] is True

    with pytest.raises(ConfigLoadError, match="invalid override key"):
        load_config(config_path, environ={}, overrides={"..": 1})


@pytest.mark.unit
def test_dump_effective_config_is_deterministic(tmp_path: Path) -> None:
    config_path = tmp_path / "jarvis.toml"
    _write_config(config_path, "")

    first = dump_effective_config(load_config(config_path, environ={}))
    second = dump_effective_config(load_config(config_path, environ={}))

    assert first == second
    assert json.loads(first)["meta"]["schema_version"] == 1
    assert ", " not in first
