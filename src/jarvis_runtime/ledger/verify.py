"""Replay verification and read helpers for ledger files."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path

from jarvis_runtime.domain.errors import ChainCorruptionError, LedgerIOError
from jarvis_runtime.domain.events import LedgerEvent, canonical_digest, parse_event_object
from jarvis_runtime.utils.fs import PathLike

__all__ = [
    "ChainIssue",
    "ChainIssueKind",
    "ChainVerificationReport",
    "read_events",
    "verify_chain",
    "verify_chain_or_raise",
]


class ChainIssueKind(StrEnum):
    UNPARSABLE = "unparsable"
    HASH_MISMATCH = "hash_mismatch"
    BROKEN_LINK = "broken_link"


@dataclass(frozen=True, slots=True)
class ChainIssue:
    """First inconsistency found while replaying a ledger file."""

    line_number: int
    kind: ChainIssueKind
    detail: str

    def to_dict(self) -> dict[str, object]:
        return {"line_number": self.line_number, "kind": self.kind.value, "detail": self.detail}


@dataclass(frozen=True, slots=True)
class ChainVerificationReport:
    """Outcome of recomputing every digest and link in a ledger file."""

    path: Path
    event_count: int
    head: str
    issue: ChainIssue | None = None

    @property
    def ok(self) -> bool:
        return self.issue is None

    def to_dict(self) -> dict[str, object]:
        return {
            "path": str(self.path),
            "ok": self.ok,
            "event_count": self.event_count,
            "head": self.head,
            "issue": None if self.issue is None else self.issue.to_dict(),
        }


def read_events(path: PathLike) -> Iterator[LedgerEvent]:
    """
    Parse a ledger file into events in file order.

    Blank lines are skipped and a missing file yields nothing. Digests and links are not
    checked here; use :func:`verify_chain` for that.
    """

    resolved = Path(path)
    for line_number, line in _iter_lines(resolved, missing_ok=True):
        try:
            yield LedgerEvent.from_json(line)
        except ValueError as exc:
            raise ChainCorruptionError(
                f"ledger {resolved} line {line_number}: unparsable record: {exc}",
                path=str(resolved),
                line_number=line_number,
            ) from exc


def verify_chain(path: PathLike) -> ChainVerificationReport:
    """Replay ``path`` and stop at the first record that breaks the chain."""

    resolved = Path(path)
    expected_prev = ""
    count = 0
    for line_number, line in _iter_lines(resolved, missing_ok=False):
        try:
            payload = parse_event_object(line)
            event = LedgerEvent.from_dict(payload)
        except ValueError as exc:
            return _report(
                resolved, count, expected_prev, line_number, ChainIssueKind.UNPARSABLE, str(exc)
            )

        recomputed = canonical_digest(payload)
        if recomputed != event.event_hash:
            return _report(
                resolved,
                count,
                expected_prev,
                line_number,
                ChainIssueKind.HASH_MISMATCH,
                f"stored event_hash {event.event_hash or '<missing>'} != recomputed {recomputed}",
            )
        if event.prev_event_hash != expected_prev:
            return _report(
                resolved,
                count,
                expected_prev,
                line_number,
                ChainIssueKind.BROKEN_LINK,
                f"prev_event_hash {event.prev_event_hash or '<genesis>'} != "
                f"expected {expected_prev or '<genesis>'}",
            )
        expected_prev = event.event_hash
        count += 1

    return ChainVerificationReport(path=resolved, event_count=count, head=expected_prev)


def verify_chain_or_raise(path: PathLike) -> ChainVerificationReport:
    """Like :func:`verify_chain` but raise ``ChainCorruptionError`` on the first issue."""
    report = verify_chain(path)
    if report.issue is not None:
        raise ChainCorruptionError(
            f"ledger {report.path} line {report.issue.line_number}: "
            f"{report.issue.kind.value}: {report.issue.detail}",
            path=str(report.path),
            line_number=report.issue.line_number,
        )
    return report


def _report(
    path: Path,
    count: int,
    head: str,
    line_number: int,
    kind: ChainIssueKind,
    detail: str,
) -> ChainVerificationReport:
    return ChainVerificationReport(
        path=path,
        event_count=count,
        head=head,
        issue=ChainIssue(line_number=line_number, kind=kind, detail=detail),
    )


def _iter_lines(path: Path, *, missing_ok: bool) -> Iterator[tuple[int, str]]:
    try:
        handle = path.open("r", encoding="utf-8")
    except FileNotFoundError:
        if missing_ok:
            return
        raise LedgerIOError(f"ledger file not found: {path}") from None
    except OSError as exc:
        raise LedgerIOError(f"cannot read ledger {path}: {exc}") from exc

    with handle:
        try:
            for line_number, raw in enumerate(handle, start=1):
                stripped = raw.strip()
                if stripped:
                    yield line_number, stripped
        except UnicodeDecodeError as exc:
            raise LedgerIOError(f"ledger {path} is not valid UTF-8: {exc}") from exc
