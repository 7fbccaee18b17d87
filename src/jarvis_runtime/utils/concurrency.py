"""Thread-safe cancellation primitive shared by the orchestrator and the gateway."""

from __future__ import annotations

import threading

from jarvis_runtime.domain.errors import TaskCancelledError


class CancellationToken:
    """Cooperative cancellation token backed by ``threading.Event``.

    A caller holding the token may cancel an in-flight task from another thread; the
    gateway polls it while a child process runs and the orchestrator checks it between
    steps.
    """

    __slots__ = ("_event", "_lock", "_reason")

    def __init__(self) -> None:
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        with self._lock:
            if not self._event.is_set():
                self._reason = reason
            self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        with self._lock:
            return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TaskCancelledError(self.reason or "operation cancelled")


__all__ = ["CancellationToken"]
