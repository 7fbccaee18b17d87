"""Utility exports for filesystem, hashing, and cancellation helpers."""

from jarvis_runtime.utils.concurrency import CancellationToken
from jarvis_runtime.utils.fs import ensure_parent_dir, is_within, resolve_path
from jarvis_runtime.utils.hashing import (
    SHA256_HEX_LENGTH,
    canonical_json,
    is_sha256_hex,
    sha256_bytes,
    sha256_text,
)

__all__ = [
    "SHA256_HEX_LENGTH",
    "CancellationToken",
    "canonical_json",
    "ensure_parent_dir",
    "is_sha256_hex",
    "is_within",
    "resolve_path",
    "sha256_bytes",
    "sha256_text",
]
