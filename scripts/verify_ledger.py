"""
jarvis-runtime — verify ledger chain integrity.

Purpose
- Replay a hash-chained ledger file, recompute every event digest, and check every link.
- Produce deterministic, machine-readable output suitable for automation.

Exit codes
- 0: chain intact. 1: first broken record reported. 2: ledger or config could not be read.
"""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"


def _ensure_src_path() -> None:
    if str(SRC_PATH) not in sys.path:
        sys.path.insert(0, str(SRC_PATH))


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Verify the hash chain of a jarvis-runtime ledger file.",
    )
    parser.add_argument(
        "ledger",
        type=Path,
        nargs="?",
        default=None,
        help="Ledger path. Defaults to ledger.path from the effective config.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Config file used to resolve the default ledger path.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit machine-readable JSON output.",
    )
    return parser.parse_args(argv)


def _emit_json(payload: Mapping[str, object]) -> None:
    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _emit_text(payload: Mapping[str, object]) -> None:
    status = "OK" if payload["ok"] else "BROKEN"
    print(f"{status}: {payload['path']}")
    print(f"events verified: {payload['event_count']}")
    print(f"head: {payload['head'] or '<empty>'}")
    issue = payload.get("issue")
    if isinstance(issue, Mapping):
        print(f"line {issue['line_number']}: {issue['kind']}: {issue['detail']}")


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    _ensure_src_path()
    from jarvis_runtime.config import ConfigLoadError, ConfigValidationError, load_config
    from jarvis_runtime.domain.errors import LedgerIOError
    from jarvis_runtime.ledger import verify_chain

    try:
        if args.ledger is not None:
            ledger_path = args.ledger.expanduser().resolve()
        else:
            config = load_config(args.config)
            ledger_path = Path(config["ledger"]["path"])
        report = verify_chain(ledger_path)
    except (ConfigLoadError, ConfigValidationError, LedgerIOError) as exc:
        if args.json:
            _emit_json({"ok": False, "error": str(exc)})
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 2

    payload = report.to_dict()
    if args.json:
        _emit_json(payload)
    else:
        _emit_text(payload)
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
