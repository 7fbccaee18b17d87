"""
Structured logging setup with JSON-lines output and raw-output suppression.

Each task gets its own queue-backed handler writing ``<log_dir>/<task_id>/runtime.jsonl``.
Several tasks may log at once through the same named logger: a handler only accepts
records that carry its own task id, or no task id at all.
"""

from __future__ import annotations

import atexit
import contextvars
import json
import logging
import logging.handlers
import math
import queue
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, cast

import structlog

from jarvis_runtime.constants import DEFAULT_LOG_DIR

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_OMITTED_VALUE: Final[str] = "***OMITTED***"
_LOG_FILENAME: Final[str] = "runtime.jsonl"
_DEFAULT_LOGGER_NAME: Final[str] = "jarvis_runtime"
_QUEUE_SIZE: Final[int] = 4096

_CORRELATION_KEYS: Final[tuple[str, ...]] = ("task_id", "workspace_id")

# Raw subprocess payloads must never reach a log sink; only their digests may.
_RAW_OUTPUT_KEYS: Final[frozenset[str]] = frozenset(
    {"stdout", "stderr", "input_bytes", "patch_text", "diff_text"}
)

_STANDARD_LOG_RECORD_FIELDS: Final[frozenset[str]] = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "thread",
        "threadName",
        "taskName",
    }
)

_CorrelationState = tuple[tuple[str, str], ...]
_CORRELATION_CONTEXT: contextvars.ContextVar[_CorrelationState] = contextvars.ContextVar(
    "jarvis_observability_correlation", default=()
)

_ACTIVE_HANDLES_LOCK = threading.Lock()
_ACTIVE_HANDLES: list[StructuredLoggingHandle] = []
_ATEXIT_REGISTERED = False


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Configuration for queue-backed structured logging of one task."""

    task_id: str
    base_log_dir: Path | str = Path(DEFAULT_LOG_DIR)
    logger_name: str = _DEFAULT_LOGGER_NAME
    level: int | str = "INFO"
    log_to_stdout: bool = False


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    task_id: str,
    log_dir: Path | str | None = None,
    logger_name: str = _DEFAULT_LOGGER_NAME,
) -> StructuredLoggingHandle:
    """Configure structured logging for ``task_id`` from an ``[observability]`` mapping.

    Parameters
    ----------
    observability_config:
        Mapping compatible with ``[observability]`` settings in ``jarvis.toml``.
    task_id:
        Task identifier used for the per-task log directory and as a correlation field.
    log_dir:
        Optional override for the base log directory.
    logger_name:
        Logger name to attach the task handler to.
    """

    cfg = dict(observability_config or {})
    raw_level = cfg.get("log_level", "INFO")
    level: int | str = raw_level if isinstance(raw_level, (int, str)) else "INFO"
    raw_base_log_dir: object = log_dir if log_dir is not None else cfg.get("log_dir")
    base_log_dir: Path | str = Path(DEFAULT_LOG_DIR)
    if isinstance(raw_base_log_dir, (Path, str)):
        base_log_dir = raw_base_log_dir

    return setup_structured_logging(
        LoggingConfig(
            task_id=task_id,
            base_log_dir=base_log_dir,
            logger_name=logger_name,
            level=level,
            log_to_stdout=bool(cfg.get("log_to_stdout", False)),
        )
    )


def configure_structlog() -> None:
    """Route ``structlog`` decision logs into the stdlib logger hierarchy."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.render_to_log_kwargs,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


class _TaskRecordFilter(logging.Filter):
    """Reject records that belong to a different task."""

    def __init__(self, task_id: str) -> None:
        super().__init__()
        self._task_id = task_id

    def filter(self, record: logging.LogRecord) -> bool:
        # Runs in the emitting thread, so the correlation contextvar is the caller's.
        owner = getattr(record, "task_id", None)
        if not isinstance(owner, str) or not owner.strip():
            owner = get_correlation_context().get("task_id")
        return owner is None or owner.strip() == self._task_id


class _NonBlockingQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that counts and drops records when the queue is full."""

    def __init__(self, log_queue: queue.Queue[object]) -> None:
        super().__init__(log_queue)
        self._drop_lock = threading.Lock()
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        context = get_correlation_context()
        if context:
            record.correlation = context
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._drop_lock:
                self.dropped += 1


class _JsonLineFormatter(logging.Formatter):
    """Formatter that emits canonical JSON objects per log line."""

    def __init__(self, *, base_context: Mapping[str, str]) -> None:
        super().__init__()
        self._base_context = dict(base_context)

    def format(self, record: logging.LogRecord) -> str:
        event: dict[str, JSONValue] = {
            "timestamp": _iso8601z_from_epoch(record.created),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        correlation = _merge_correlation_context(record, self._base_context)
        for key, value in sorted(correlation.items()):
            event[key] = value

        extras = _extract_extra_fields(record)
        if extras:
            event["fields"] = extras

        if record.exc_info is not None:
            event["exception"] = self.formatException(record.exc_info)

        return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


class StructuredLoggingHandle:
    """The handler, queue and listener that make up one task's log sink."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        task_id: str,
        log_path: Path,
        queue_handler: _NonBlockingQueueHandler,
        sink_handlers: tuple[logging.Handler, ...],
        listener: logging.handlers.QueueListener,
    ) -> None:
        self.logger = logger
        self.task_id = task_id
        self.log_path = log_path
        self._queue_handler = queue_handler
        self._sink_handlers = sink_handlers
        self._listener = listener
        self._shutdown_lock = threading.Lock()
        self._is_shutdown = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def shutdown(self) -> None:
        """Detach from the logger, drain the queue and close the sinks. Idempotent."""
        with self._shutdown_lock:
            if self._is_shutdown:
                return

            self.logger.removeHandler(self._queue_handler)
            # stop() processes every queued record before joining the listener thread.
            self._listener.stop()
            self._queue_handler.close()

            for handler in self._sink_handlers:
                handler.flush()
                handler.close()

            self._is_shutdown = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """
    Attach a queue-backed JSON-lines sink for one task.

    Handles set up for other tasks stay attached; release this one with
    ``shutdown_logging(handle)``.
    """
    task_id = _validate_name(config.task_id, "task_id")
    logger_name = _validate_name(config.logger_name, "logger_name")
    level = _parse_log_level(config.level)
    task_log_dir = Path(config.base_log_dir) / task_id
    task_log_dir.mkdir(parents=True, exist_ok=True)
    log_path = task_log_dir / _LOG_FILENAME

    formatter = _JsonLineFormatter(base_context={"task_id": task_id})

    file_handler = logging.FileHandler(log_path, encoding="utf-8")
    file_handler.setFormatter(formatter)
    sink_handlers: list[logging.Handler] = [file_handler]
    if config.log_to_stdout:
        stdout_handler = logging.StreamHandler()
        stdout_handler.setFormatter(formatter)
        sink_handlers.append(stdout_handler)

    log_queue: queue.Queue[object] = queue.Queue(maxsize=_QUEUE_SIZE)
    queue_handler = _NonBlockingQueueHandler(log_queue)
    queue_handler.setLevel(level)
    queue_handler.addFilter(_TaskRecordFilter(task_id))

    listener = logging.handlers.QueueListener(log_queue, *sink_handlers)
    listener.start()

    logger = logging.getLogger(logger_name)
    logger.propagate = False
    # Shared by concurrent tasks; per-task levels are enforced on each handler.
    if logger.level == logging.NOTSET or level < logger.level:
        logger.setLevel(level)
    logger.addHandler(queue_handler)
    configure_structlog()

    handle = StructuredLoggingHandle(
        logger=logger,
        task_id=task_id,
        log_path=log_path,
        queue_handler=queue_handler,
        sink_handlers=tuple(sink_handlers),
        listener=listener,
    )

    with _ACTIVE_HANDLES_LOCK:
        _ACTIVE_HANDLES.append(handle)

    _register_atexit_shutdown()
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Shut down ``handle``, or every handle still open when none is given."""
    with _ACTIVE_HANDLES_LOCK:
        if handle is None:
            targets = list(_ACTIVE_HANDLES)
            _ACTIVE_HANDLES.clear()
        else:
            targets = [handle]
            if handle in _ACTIVE_HANDLES:
                _ACTIVE_HANDLES.remove(handle)

    for target in targets:
        target.shutdown()


def active_logging_handles() -> tuple[StructuredLoggingHandle, ...]:
    with _ACTIVE_HANDLES_LOCK:
        return tuple(_ACTIVE_HANDLES)


def get_correlation_context() -> dict[str, str]:
    """Return the current correlation context as a plain dictionary."""
    return dict(_CORRELATION_CONTEXT.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields (``task_id``, ``workspace_id``) for log records.

    A ``None`` value unbinds the field for the duration of the scope.
    """
    state = get_correlation_context()
    for key, value in fields.items():
        key_name = _validate_name(key, "correlation key")
        if value is None:
            state.pop(key_name, None)
        else:
            state[key_name] = _validate_name(value, "correlation value")

    token = _CORRELATION_CONTEXT.set(tuple(state.items()))
    try:
        yield
    finally:
        _CORRELATION_CONTEXT.reset(token)


def _register_atexit_shutdown() -> None:
    global _ATEXIT_REGISTERED
    if _ATEXIT_REGISTERED:
        return
    atexit.register(shutdown_logging)
    _ATEXIT_REGISTERED = True


def _validate_name(value: str, label: str) -> str:
    if not isinstance(value, str):
        raise ValueError(f"{label} must be a string, got {type(value).__name__}")
    normalized = value.strip()
    if not normalized:
        raise ValueError(f"{label} must not be empty")
    return normalized


def _parse_log_level(value: int | str) -> int:
    if isinstance(value, int):
        return value

    if not isinstance(value, str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")

    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed

    raise ValueError(f"unsupported logging level {value!r}")


def _iso8601z_from_epoch(epoch_seconds: float) -> str:
    timestamp = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _merge_correlation_context(
    record: logging.LogRecord,
    base_context: Mapping[str, str],
) -> dict[str, str]:
    merged = dict(base_context)

    captured = getattr(record, "correlation", None)
    if isinstance(captured, Mapping):
        for key, value in captured.items():
            if isinstance(key, str) and isinstance(value, str) and value.strip():
                merged[key] = value.strip()

    for key in _CORRELATION_KEYS:
        value = getattr(record, key, None)
        if isinstance(value, str) and value.strip():
            merged[key] = value.strip()

    return merged


def _extract_extra_fields(record: logging.LogRecord) -> dict[str, JSONValue]:
    fields: dict[str, JSONValue] = {}
    for key, value in record.__dict__.items():
        if key in _STANDARD_LOG_RECORD_FIELDS:
            continue
        if key in _CORRELATION_KEYS or key == "correlation":
            continue
        if key.startswith("_"):
            continue
        if key in _RAW_OUTPUT_KEYS:
            fields[key] = _OMITTED_VALUE
            continue
        fields[key] = _normalize_json_value(value)
    return fields


def _normalize_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, (bool, int, str)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else repr(value)
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return f"<{len(value)} bytes omitted>"
    if isinstance(value, Mapping):
        return {str(key): _normalize_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize_json_value(item) for item in value]
    return repr(value)


__all__ = [
    "JSONScalar",
    "JSONValue",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "active_logging_handles",
    "configure_structlog",
    "correlation_scope",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
