"""
Structured logging (``backoffice_kernel.logging_config``).

Every record leaves the ``backoffice`` logger tree as one JSON object per
line: an envelope (``ts``, ``level``, ``logger``, ``message``), the
fields bound in ``LogContext``, then the record's ``extra``.  Messages
are snake_case event names (``recurring_occurrence_executed``,
``sweep_completed``); anything worth filtering on goes in ``extra``.

An execution binds its schedule, occurrence date and trigger once, and
every line logged underneath (repository, job and invoice services)
carries them without threading them through each call.
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
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any
from uuid import UUID

_ROOT = "backoffice"

# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = frozenset({
    "correlation_id",
    "actor_id",
    "schedule_id",
    "occurrence_date",
    "trigger",
})

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("backoffice_log_context", default=_EMPTY)


def _merged(fields: dict[str, Any]) -> Mapping[str, str]:
    unknown = set(fields) - _CONTEXT_FIELDS
    if unknown:
        raise TypeError(f"Unknown log context fields: {sorted(unknown)}")
    current = dict(_context.get())
    current.update({k: str(v) for k, v in fields.items() if v is not None})
    return MappingProxyType(current)


class LogContext:
    """
    Per-thread (and per-task) log fields, backed by one ``ContextVar``.

    Worker threads start with an empty context, so the sweep binds the
    fields inside each worker rather than in the submitting thread.
    """

    @staticmethod
    def set(**fields: Any) -> None:
        """Set fields for the rest of the current context.  None is ignored."""
        _context.set(_merged(fields))

    @staticmethod
    def get_all() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """Set fields for the ``with`` block, restoring the previous ones after."""
        token = _context.set(_merged(fields))
        try:
            yield
        finally:
            _context.reset(token)


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message",
    "asctime",
    "taskName",
}


def _default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Mapping):
        return dict(value)
    return repr(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # Typed errors carry their structured attributes (schedule_id, reason, ...)
    for name, value in vars(exc).items():
        if not name.startswith("_"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Formats a record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_context.get(),
        }
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RESERVED and key not in payload
        )
        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """``get_logger("recurring.sweep")`` -> ``backoffice.recurring.sweep``."""
    return logging.getLogger(f"{_ROOT}.{name}")


_configured = threading.Event()
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``backoffice`` logger.

    Only the first call takes effect; the sweep runner, the HTTP app and
    the engine initializer may each call it.
    """
    with _configure_lock:
        if _configured.is_set():
            return
        root = logging.getLogger(_ROOT)
        root.setLevel(level)
        root.propagate = False
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        root.addHandler(target)
        _configured.set()


def reset_logging() -> None:
    """Drop the handler and allow reconfiguration.  Tests only."""
    with _configure_lock:
        root = logging.getLogger(_ROOT)
        for h in list(root.handlers):
            root.removeHandler(h)
        root.setLevel(logging.WARNING)
        _configured.clear()
