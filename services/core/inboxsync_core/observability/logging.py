"""Structured logging for Inboxsync services.

Provides JSON-formatted logging plus a sync context (account, provider,
chat, event type) that is attached to every record emitted while the
context is active, including records from plain ``logging.getLogger``
loggers in the domain services.
"""

import json
import logging
import sys
import traceback
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Iterator, Optional


# Cache for logger instances
_loggers: dict[str, "StructuredLogger"] = {}

DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_SERVICE_NAME = "inboxsync"


@dataclass(frozen=True)
class SyncContext:
    """Identifies the sync work a log record belongs to."""

    account_id: Optional[str] = None
    provider: Optional[str] = None
    chat_id: Optional[str] = None
    event_type: Optional[str] = None
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result = {
            name: value
            for name, value in (
                ("account_id", self.account_id),
                ("provider", self.provider),
                ("chat_id", self.chat_id),
                ("event_type", self.event_type),
            )
            if value is not None
        }
        result.update(self.extra)
        return result


_current_context: ContextVar[Optional[SyncContext]] = ContextVar(
    "inboxsync_sync_context", default=None
)


def current_context() -> Optional[SyncContext]:
    return _current_context.get()


@contextmanager
def sync_context(**fields: Any) -> Iterator[SyncContext]:
    """Attach sync fields to every record logged inside the block.

    Nested blocks inherit and override the outer context's fields.
    """
    known = {k: fields.pop(k) for k in ("account_id", "provider", "chat_id", "event_type") if k in fields}
    outer = _current_context.get() or SyncContext()
    context = replace(outer, **known, extra={**outer.extra, **fields})

    token = _current_context.set(context)
    try:
        yield context
    finally:
        _current_context.reset(token)


class SyncContextFilter(logging.Filter):
    """Copies the active SyncContext onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _current_context.get()
        if context is not None:
            for key, value in context.to_dict().items():
                if not hasattr(record, key):
                    setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """Formats log records as one JSON object per line."""

    # Fields to exclude from extra data
    RESERVED_FIELDS = {
        "name", "msg", "args", "created", "filename", "funcName",
        "levelname", "levelno", "lineno", "module", "msecs",
        "pathname", "process", "processName", "relativeCreated",
        "stack_info", "exc_info", "exc_text", "thread", "threadName",
        "message", "asctime", "taskName",
    }

    def __init__(self, service_name: str = DEFAULT_SERVICE_NAME):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }

        if record.levelno >= logging.WARNING:
            entry["source"] = {
                "file": record.pathname,
                "line": record.lineno,
                "function": record.funcName,
            }

        if record.exc_info:
            entry["exception"] = "".join(traceback.format_exception(*record.exc_info))

        for key, value in record.__dict__.items():
            if key in self.RESERVED_FIELDS or key.startswith("_"):
                continue
            try:
                json.dumps(value)
                entry[key] = value
            except (TypeError, ValueError):
                entry[key] = str(value)

        return json.dumps(entry)


class StructuredLogger:
    """Logger that accepts structured fields as keyword arguments.

    Usage:
        logger = get_logger(__name__)
        logger.info("Chat page synced", context=SyncContext(account_id="acc_1"), chats=10)
    """

    def __init__(self, name: str):
        self.name = name
        self._logger = logging.getLogger(name)

    def log(
        self,
        level: int,
        msg: str,
        context: Optional[SyncContext] = None,
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        if context:
            fields = {**context.to_dict(), **fields}
        self._logger.log(level, msg, exc_info=exc_info, extra=fields)

    def debug(self, msg: str, context: Optional[SyncContext] = None, **fields: Any) -> None:
        self.log(logging.DEBUG, msg, context, **fields)

    def info(self, msg: str, context: Optional[SyncContext] = None, **fields: Any) -> None:
        self.log(logging.INFO, msg, context, **fields)

    def warning(self, msg: str, context: Optional[SyncContext] = None, **fields: Any) -> None:
        self.log(logging.WARNING, msg, context, **fields)

    def error(
        self,
        msg: str,
        context: Optional[SyncContext] = None,
        exc_info: bool = False,
        **fields: Any,
    ) -> None:
        self.log(logging.ERROR, msg, context, exc_info=exc_info, **fields)


def get_logger(name: str) -> StructuredLogger:
    """Get or create a structured logger."""
    if name not in _loggers:
        _loggers[name] = StructuredLogger(name)
    return _loggers[name]


def configure_logging(
    level: str = DEFAULT_LOG_LEVEL,
    json_format: bool = True,
    service_name: str = DEFAULT_SERVICE_NAME,
) -> None:
    """Configure the root logger.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_format: Whether to emit JSON lines
        service_name: Service name for log identification
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level.upper()))
    handler.addFilter(SyncContextFilter())

    if json_format:
        handler.setFormatter(JsonFormatter(service_name=service_name))
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )

    root_logger.addHandler(handler)
