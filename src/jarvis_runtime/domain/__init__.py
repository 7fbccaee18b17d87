"""
jarvis-runtime — domain layer

File: src/jarvis_runtime/domain/__init__.py

Purpose
- Domain types shared by the ledger, gateway, and orchestrator: ledger events, tasks,
  workspaces, identifiers, and the error hierarchy.

Functional requirements
- Domain objects are serializable and validated on construction.

Non-functional requirements
- Keep the domain layer free of IO side effects.
"""
