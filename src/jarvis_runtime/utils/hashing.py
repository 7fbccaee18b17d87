"""
jarvis-runtime — hashing utilities

File: src/jarvis_runtime/utils/hashing.py

Purpose
- Provide deterministic SHA-256 helpers for bytes and text.
- Provide the canonical JSON encoding used wherever a digest must be reproducible
  by a third party.

Functional requirements
- Canonical JSON is byte-for-byte stable for equal inputs: sorted keys, compact
  separators, UTF-8 without ASCII escaping.

Non-functional requirements
- Standard library only; behavior is cross-platform deterministic.
"""

from __future__ import annotations

import hashlib
import json
import re
from typing import Final

SHA256_HEX_LENGTH: Final[int] = 64
_SHA256_HEX_RE: Final[re.Pattern[str]] = re.compile(r"^[0-9a-f]{64}$")

__all__ = [
    "SHA256_HEX_LENGTH",
    "canonical_json",
    "is_sha256_hex",
    "sha256_bytes",
    "sha256_text",
]


def sha256_bytes(data: bytes) -> str:
    """Return SHA-256 hex digest for raw bytes."""

    return hashlib.sha256(data).hexdigest()


def sha256_text(text: str, *, encoding: str = "utf-8") -> str:
    """Return SHA-256 hex digest for text encoded with ``encoding``."""

    return sha256_bytes(text.encode(encoding))


def canonical_json(value: object) -> str:
    """
    Serialize ``value`` to canonical JSON.

    Raises ``TypeError`` for values JSON cannot represent and ``ValueError`` for
    non-finite floats, so a digest is never computed over a lossy encoding.
    """

    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    )


def is_sha256_hex(value: object) -> bool:
    """Return ``True`` for a lowercase 64-character SHA-256 hex digest."""

    return isinstance(value, str) and _SHA256_HEX_RE.fullmatch(value) is not None
