"""Unit tests for task and workspace identifiers."""

from __future__ import annotations

import hashlib
from pathlib import Path, PurePosixPath

import pytest

from jarvis_runtime.domain import ids


def _zero_bytes(size: int) -> bytes:
    return b"\x00" * size


def _ff_bytes(size: int) -> bytes:
    return b"\xff" * size


def test_generate_task_id_no_collision_10000() -> None:
    generated = {ids.generate_task_id() for _ in range(10_000)}
    assert len(generated) == 10_000


def test_task_id_format_and_validation() -> None:
    task_id = ids.generate_task_id(timestamp_ms=123_456, randbytes=_ff_bytes)
    assert task_id.startswith("task-")
    assert len(task_id) == len("task-") + ids.ULID_LENGTH
    ids.validate_task_id(task_id)

    with pytest.raises(ValueError, match="expected prefix"):
        ids.validate_task_id("job-" + task_id.removeprefix("task-"))
    with pytest.raises(ValueError, match="invalid ULID part"):
        ids.validate_task_id("task-not-a-ulid")


def test_ulid_charset_and_boundaries() -> None:
    ulid_value = ids.generate_ulid(timestamp_ms=1, randbytes=_zero_bytes)
    assert all(char in ids.CROCKFORD_BASE32_ALPHABET for char in ulid_value)
    ids.validate_ulid(ulid_value.lower())

    with pytest.raises(ValueError, match="ulid length must be"):
        ids.validate_ulid("0" * 25)
    with pytest.raises(ValueError, match="overflow"):
        ids.validate_ulid("8" + "0" * 25)
    with pytest.raises(ValueError, match="timestamp_ms out of range"):
        ids.generate_ulid(timestamp_ms=ids.ULID_MAX_TIMESTAMP_MS + 1)
    with pytest.raises(ValueError, match="exactly 10 bytes"):
        ids.generate_ulid(randbytes=lambda size: b"\x00")


def test_workspace_id_is_deterministic_and_path_specific(tmp_path: Path) -> None:
    first = ids.workspace_id_for_path(tmp_path / "repo")
    again = ids.workspace_id_for_path(str(tmp_path / "repo"))
    sibling = ids.workspace_id_for_path(tmp_path / "repo2")

    assert first == again
    assert first != sibling
    assert len(first) == 12
    ids.validate_workspace_id(first)


def test_workspace_id_known_value() -> None:
    expected = hashlib.sha256(b"/tmp/ws").hexdigest()[:12]
    assert ids.workspace_id_for_path(PurePosixPath("/tmp/ws")) == expected


def test_workspace_id_rejects_relative_paths() -> None:
    with pytest.raises(ValueError, match="must be absolute"):
        ids.workspace_id_for_path("relative/repo")


@pytest.mark.parametrize("bad", ["", "ABCDEF012345", "abc", "0123456789abc", 123])
def test_validate_workspace_id_rejects_malformed(bad: object) -> None:
    with pytest.raises(ValueError):
        ids.validate_workspace_id(bad)  # type: ignore[arg-type]
