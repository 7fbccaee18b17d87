"""
jarvis-runtime — unit tests for observability logging

File: tests/unit/observability/test_logging.py

Purpose
- Validate structured JSON logging with raw-output suppression, correlation metadata, and
  queue-backed reliability.

What this test file should cover
- JSON line validity and raw-output omission guarantees.
- Correlation field propagation.
- structlog decision logs reaching the same sink.
- Queue drain/shutdown behavior.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import TYPE_CHECKING
from uuid import uuid4

import pytest
import structlog

from jarvis_runtime.observability.logging import (
    LoggingConfig,
    active_logging_handles,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


def _logger_name() -> str:
    return f"jarvis_runtime.tests.logging.{uuid4().hex}"


def _read_json_lines(path: Path) -> list[dict[str, object]]:
    lines = path.read_text(encoding="utf-8").splitlines()
    return [json.loads(line) for line in lines]


@pytest.mark.unit
def test_json_lines_omit_raw_output_and_carry_correlation(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(task_id="task-logging", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    with correlation_scope(workspace_id="ws-1"):
        logger.info(
            "tool finished",
            extra={
                "stdout": "secret build output",
                "stderr": b"trace",
                "patch_text": "+added line",
                "stdout_hash": "ab" * 32,
                "exit_code": 0,
            },
        )

    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "task-logging" / "runtime.jsonl"
    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "tool finished"
    assert event["level"] == "INFO"
    assert event["task_id"] == "task-logging"
    assert event["workspace_id"] == "ws-1"
    assert str(event["timestamp"]).endswith("Z")
    fields = event["fields"]
    assert isinstance(fields, dict)
    assert fields["stdout"] == "***OMITTED***"
    assert fields["stderr"] == "***OMITTED***"
    assert fields["patch_text"] == "***OMITTED***"
    assert fields["stdout_hash"] == "ab" * 32
    assert fields["exit_code"] == 0
    assert "secret build output" not in handle.log_path.read_text(encoding="utf-8")


@pytest.mark.unit
def test_bytes_values_are_never_written(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(task_id="task-bytes", base_log_dir=tmp_path, logger_name=logger_name)
    )

    logging.getLogger(logger_name).info("blob", extra={"payload": b"raw-bytes"})
    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["fields"] == {"payload": "<9 bytes omitted>"}


@pytest.mark.unit
def test_correlation_scope_is_restored() -> None:
    assert get_correlation_context() == {}
    with correlation_scope(task_id="t-1", workspace_id="w-1"):
        assert get_correlation_context() == {"task_id": "t-1", "workspace_id": "w-1"}
        with correlation_scope(workspace_id=None):
            assert get_correlation_context() == {"task_id": "t-1"}
        assert get_correlation_context()["workspace_id"] == "w-1"
    assert get_correlation_context() == {}

    with pytest.raises(ValueError, match="correlation value must not be empty"):
        with correlation_scope(task_id=" "):
            pass


@pytest.mark.unit
def test_structlog_events_reach_the_task_log(tmp_path: Path) -> None:
    handle = setup_structured_logging(
        LoggingConfig(task_id="task-structlog", base_log_dir=tmp_path)
    )

    with correlation_scope(workspace_id="ws-structlog"):
        structlog.get_logger("jarvis_runtime.tests.structlog").info(
            "orchestrator_transition", from_state="INTAKE", to_state="EXECUTE"
        )

    shutdown_logging(handle)

    (event,) = _read_json_lines(handle.log_path)
    assert event["message"] == "orchestrator_transition"
    assert event["logger"] == "jarvis_runtime.tests.structlog"
    assert event["workspace_id"] == "ws-structlog"
    assert event["fields"] == {"from_state": "INTAKE", "to_state": "EXECUTE"}


@pytest.mark.unit
def test_setup_logging_reads_observability_mapping(tmp_path: Path) -> None:
    handle = setup_logging(
        {"log_level": "WARNING", "log_dir": str(tmp_path), "log_to_stdout": False},
        task_id="task-config",
        logger_name=_logger_name(),
    )

    handle.logger.info("dropped by level")
    handle.logger.warning("kept")
    shutdown_logging(handle)

    assert handle.log_path == tmp_path / "task-config" / "runtime.jsonl"
    assert [event["message"] for event in _read_json_lines(handle.log_path)] == ["kept"]


@pytest.mark.unit
def test_multi_threaded_logging_is_complete(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handle = setup_structured_logging(
        LoggingConfig(task_id="task-threads", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)

    def _emit(worker: int) -> None:
        for index in range(25):
            logger.info("tick", extra={"worker": worker, "index": index})

    threads = [threading.Thread(target=_emit, args=(worker,)) for worker in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    shutdown_logging(handle)

    events = _read_json_lines(handle.log_path)
    assert len(events) == 100
    assert handle.dropped_records == 0


@pytest.mark.unit
def test_concurrent_task_handles_keep_their_own_records(tmp_path: Path) -> None:
    logger_name = _logger_name()
    first = setup_structured_logging(
        LoggingConfig(task_id="task-a", base_log_dir=tmp_path, logger_name=logger_name)
    )
    second = setup_structured_logging(
        LoggingConfig(task_id="task-b", base_log_dir=tmp_path, logger_name=logger_name)
    )
    logger = logging.getLogger(logger_name)
    first_done = threading.Event()

    def _task(task_id: str) -> None:
        with correlation_scope(task_id=task_id):
            logger.info("step", extra={"index": 0})
            if task_id == "task-a":
                first_done.wait(timeout=5)
            logger.info("step", extra={"index": 1})

    worker_a = threading.Thread(target=_task, args=("task-a",))
    worker_a.start()
    _task("task-b")
    shutdown_logging(second)
    first_done.set()
    worker_a.join()

    assert not first.is_shutdown
    assert second.is_shutdown
    assert active_logging_handles() == (first,)
    shutdown_logging(first)

    for handle in (first, second):
        events = _read_json_lines(handle.log_path)
        assert [event["fields"] for event in events] == [{"index": 0}, {"index": 1}]
        assert {event["task_id"] for event in events} == {handle.task_id}


@pytest.mark.unit
def test_records_without_a_task_reach_every_open_handle(tmp_path: Path) -> None:
    logger_name = _logger_name()
    handles = [
        setup_structured_logging(
            LoggingConfig(task_id=task_id, base_log_dir=tmp_path, logger_name=logger_name)
        )
        for task_id in ("task-x", "task-y")
    ]

    logging.getLogger(logger_name).info("shared")
    logging.getLogger(logger_name).info("tagged", extra={"task_id": "task-y"})
    shutdown_logging()
    shutdown_logging()

    assert all(handle.is_shutdown for handle in handles)
    assert active_logging_handles() == ()
    assert [event["message"] for event in _read_json_lines(handles[0].log_path)] == ["shared"]
    assert [event["message"] for event in _read_json_lines(handles[1].log_path)] == [
        "shared",
        "tagged",
    ]


@pytest.mark.unit
@pytest.mark.parametrize(
    ("overrides", "message"),
    [
        ({"task_id": " "}, "task_id must not be empty"),
        ({"logger_name": ""}, "logger_name must not be empty"),
        ({"level": "LOUD"}, "unsupported logging level"),
    ],
)
def test_invalid_logging_config_is_rejected(
    tmp_path: Path, overrides: dict[str, object], message: str
) -> None:
    params: dict[str, object] = {"task_id": "task-invalid", "base_log_dir": tmp_path}
    params.update(overrides)
    with pytest.raises(ValueError, match=message):
        setup_structured_logging(LoggingConfig(**params))  # type: ignore[arg-type]
