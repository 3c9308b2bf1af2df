"""Observability package for structured logging."""

from inboxsync_core.observability.logging import (
    JsonFormatter,
    StructuredLogger,
    SyncContext,
    SyncContextFilter,
    configure_logging,
    current_context,
    get_logger,
    sync_context,
)

__all__ = [
    "JsonFormatter",
    "StructuredLogger",
    "SyncContext",
    "SyncContextFilter",
    "configure_logging",
    "current_context",
    "get_logger",
    "sync_context",
]
