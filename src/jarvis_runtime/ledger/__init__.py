"""Append-only hash-chained event ledger."""

from jarvis_runtime.ledger.chain import Clock, Ledger
from jarvis_runtime.ledger.verify import (
    ChainIssue,
    ChainIssueKind,
    ChainVerificationReport,
    read_events,
    verify_chain,
    verify_chain_or_raise,
)

__all__ = [
    "ChainIssue",
    "ChainIssueKind",
    "ChainVerificationReport",
    "Clock",
    "Ledger",
    "read_events",
    "verify_chain",
    "verify_chain_or_raise",
]
