"""Observability: structured JSON-lines logging and correlation context."""

from jarvis_runtime.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    active_logging_handles,
    configure_structlog,
    correlation_scope,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
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
