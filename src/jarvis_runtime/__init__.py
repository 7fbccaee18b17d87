"""
jarvis-runtime — trust layer for an autonomous task-execution agent.

File: src/jarvis_runtime/__init__.py

Purpose
- Package root. Exposes version metadata only.

Import boundary rules
- Must not have side effects at import time (no config loading, no logging init).
- Submodules are imported explicitly by callers: ``jarvis_runtime.ledger``,
  ``jarvis_runtime.gateway``, ``jarvis_runtime.orchestrator``.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
