"""
jarvis-runtime — hash-chained append-only ledger

File: src/jarvis_runtime/ledger/chain.py

Purpose
- Persist every task event as one canonical JSON line whose digest links to the
  previous line, so any later edit, deletion, or reordering is detectable.

Functional requirements
- ``Ledger.open`` resumes the chain from the last record already on disk and refuses
  to continue from a record it cannot parse or re-hash.
- ``Ledger.append`` stamps the write time, links, hashes, writes, and flushes before
  returning the new head. A failed write leaves the in-memory head unchanged.
- There is no update or delete operation.

Non-functional requirements
- Appends are serialized per instance under a lock; timestamps never go backwards
  within one instance.
- Two instances appending to the same file concurrently are not supported.
"""

from __future__ import annotations

import contextlib
import os
import threading
from collections.abc import Callable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from jarvis_runtime.domain.errors import ChainCorruptionError, LedgerIOError
from jarvis_runtime.domain.events import LedgerEvent, canonical_digest, parse_event_object
from jarvis_runtime.ledger.verify import read_events
from jarvis_runtime.utils.fs import PathLike, ensure_parent_dir

Clock = Callable[[], datetime]

__all__ = ["Clock", "Ledger"]


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


class Ledger:
    """Append-only event log bound to one file path."""

    def __init__(
        self,
        path: Path,
        *,
        head: str = "",
        last_timestamp: datetime | None = None,
        fsync: bool = True,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> None:
        self._path = path
        self._head = head
        self._last_timestamp = last_timestamp
        self._fsync = fsync
        self._clock = clock if clock is not None else _utc_now
        self._lock = threading.Lock()
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @classmethod
    def open(
        cls,
        path: PathLike,
        *,
        fsync: bool = True,
        clock: Clock | None = None,
        logger: Any | None = None,
    ) -> Ledger:
        """
        Open or create the ledger at ``path`` and recover the chain head.

        A missing or empty file starts a fresh chain. An unparsable last record, or one
        whose stored digest does not recompute, raises ``ChainCorruptionError``.
        """

        resolved = Path(path).expanduser().absolute()
        try:
            ensure_parent_dir(resolved)
        except OSError as exc:
            raise LedgerIOError(f"cannot create ledger directory for {resolved}: {exc}") from exc

        head, last_timestamp = _recover_head(resolved)
        ledger = cls(
            resolved,
            head=head,
            last_timestamp=last_timestamp,
            fsync=fsync,
            clock=clock,
            logger=logger,
        )
        ledger._logger.debug(
            "ledger_opened", path=str(resolved), head=head, fresh_chain=head == ""
        )
        return ledger

    @property
    def path(self) -> Path:
        return self._path

    @property
    def head(self) -> str:
        """Digest of the last durable event, ``""`` for an empty chain."""
        with self._lock:
            return self._head

    def append(self, event: LedgerEvent) -> str:
        """Seal ``event`` onto the chain, persist it, and return its ``event_hash``."""

        if event.event_hash or event.prev_event_hash:
            raise ValueError("Ledger.append expects an unsealed event")

        with self._lock:
            timestamp = self._next_timestamp()
            try:
                sealed = event.seal(timestamp=timestamp, prev_event_hash=self._head)
                line = (sealed.to_json() + "\n").encode("utf-8")
            except (TypeError, ValueError) as exc:
                raise LedgerIOError(f"cannot serialize {event.event_type} event: {exc}") from exc

            self._write_line(line)

            self._head = sealed.event_hash
            self._last_timestamp = timestamp

        self._logger.debug(
            "ledger_event_appended",
            task_id=sealed.task_id,
            event_type=sealed.event_type.value,
            actor=sealed.actor.value,
            event_hash=sealed.event_hash,
        )
        return sealed.event_hash

    def iter_events(self) -> Iterator[LedgerEvent]:
        """Yield every event in file order. Malformed lines raise ``ChainCorruptionError``."""
        yield from read_events(self._path)

    def _next_timestamp(self) -> datetime:
        now = self._clock()
        if now.tzinfo is None or now.utcoffset() is None:
            raise LedgerIOError("ledger clock returned a naive datetime")
        now = now.astimezone(UTC)
        if self._last_timestamp is not None and now < self._last_timestamp:
            return self._last_timestamp
        return now

    def _write_line(self, line: bytes) -> None:
        try:
            with self._path.open("a+b") as handle:
                offset = handle.seek(0, os.SEEK_END)
                if offset > 0:
                    handle.seek(offset - 1)
                    if handle.read(1) != b"\n":
                        line = b"\n" + line
                try:
                    handle.write(line)
                    handle.flush()
                    if self._fsync:
                        os.fsync(handle.fileno())
                except OSError:
                    # Drop a partially written record so the next open can recover.
                    with contextlib.suppress(OSError):
                        handle.truncate(offset)
                    raise
        except OSError as exc:
            raise LedgerIOError(f"failed to append to ledger {self._path}: {exc}") from exc


def _recover_head(path: Path) -> tuple[str, datetime | None]:
    try:
        last_line_number, last_line = _last_non_blank_line(path)
    except FileNotFoundError:
        return "", None
    except (OSError, UnicodeDecodeError) as exc:
        raise LedgerIOError(f"cannot read ledger {path}: {exc}") from exc

    if last_line is None:
        return "", None

    try:
        payload = parse_event_object(last_line)
        event = LedgerEvent.from_dict(payload)
    except ValueError as exc:
        raise ChainCorruptionError(
            f"ledger {path} line {last_line_number}: unparsable record: {exc}",
            path=str(path),
            line_number=last_line_number,
        ) from exc

    if not event.event_hash or canonical_digest(payload) != event.event_hash:
        raise ChainCorruptionError(
            f"ledger {path} line {last_line_number}: event_hash does not match record contents",
            path=str(path),
            line_number=last_line_number,
        )
    return event.event_hash, event.timestamp


def _last_non_blank_line(path: Path) -> tuple[int, str | None]:
    last_number = 0
    last_line: str | None = None
    with path.open("r", encoding="utf-8") as handle:
        for number, raw in enumerate(handle, start=1):
            if raw.strip():
                last_number = number
                last_line = raw.strip()
    return last_number, last_line
