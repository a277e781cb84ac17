"""
Structured JSON logging for the workflow kernel.

Every record is one JSON object per line. Fields bound through
``LogContext`` (who is acting, on which ticket or order, inside which
workflow) are merged into each record emitted while they are bound, so a
refusal logged deep inside a service still names the subject and actor.

Usage:
    from workflow_kernel.logging_config import LogContext, get_logger

    logger = get_logger("modules.tickets.service")
    with LogContext.bind(subject_id=str(ticket_id), actor_id=actor.actor_id):
        logger.info("ticket_advanced", extra={"next_rank": "primary:1"})
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID

LOGGER_ROOT = "workflow_kernel"

_CONTEXT_FIELDS = ("correlation_id", "subject_id", "actor_id", "workflow", "trace_id")

_bound: ContextVar[MappingProxyType] = ContextVar(
    "workflow_log_context", default=MappingProxyType({})
)


class LogContext:
    """Fields attached to every record emitted in the current context.

    The bound fields live in a single ContextVar holding a read-only
    mapping, so threads and asyncio tasks each see their own copy.
    Recognised fields: correlation_id, subject_id, actor_id, workflow,
    trace_id. Values of None are ignored.
    """

    @staticmethod
    def _merged(fields: dict[str, Any]) -> MappingProxyType:
        unknown = set(fields) - set(_CONTEXT_FIELDS)
        if unknown:
            raise TypeError(f"Unknown log context field(s): {sorted(unknown)}")
        current = dict(_bound.get())
        current.update({k: v for k, v in fields.items() if v is not None})
        return MappingProxyType(current)

    @classmethod
    def set(cls, **fields: str | None) -> None:
        _bound.set(cls._merged(fields))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_bound.get())

    @classmethod
    def clear(cls) -> None:
        _bound.set(MappingProxyType({}))

    @classmethod
    @contextmanager
    def bind(cls, **fields: str | None):
        """Bind fields for the duration of a ``with`` block."""
        token = _bound.set(cls._merged(fields))
        try:
            yield cls
        finally:
            _bound.reset(token)


# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRS = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(str(v) for v in value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    """Flatten a raised exception into ``exc_*`` fields.

    Kernel errors carry a ``code`` plus the identifiers they were raised
    with (subject_id, actor_id, guard_name, ...); those become
    ``exc_code``, ``exc_subject_id`` and so on.
    """
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    for name, value in vars(exc).items():
        if name.startswith("_") or name == "code":
            continue
        fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS:
                payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Return ``workflow_kernel.<name>``."""
    return logging.getLogger(f"{LOGGER_ROOT}.{name}")


_install_lock = threading.Lock()
_installed_handler: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Install the JSON handler on the ``workflow_kernel`` logger.

    Only the first call takes effect until ``reset_logging()``.
    """
    global _installed_handler
    with _install_lock:
        if _installed_handler is not None:
            return
        if handler is None:
            handler = logging.StreamHandler(stream or sys.stderr)
        handler.setFormatter(StructuredFormatter())

        root = logging.getLogger(LOGGER_ROOT)
        root.setLevel(level)
        root.propagate = False
        root.addHandler(handler)
        _installed_handler = handler


def reset_logging() -> None:
    """Detach the installed handler. Tests only."""
    global _installed_handler
    with _install_lock:
        root = logging.getLogger(LOGGER_ROOT)
        root.handlers.clear()
        root.setLevel(logging.WARNING)
        _installed_handler = None
