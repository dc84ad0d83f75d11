"""
Structured JSON logging for the cold-storage inventory engine.

Every record is one JSON object per line:

    {"ts": ..., "level": "INFO", "logger": "coldstore.services.transaction_processor",
     "message": "movement_completed", "transaction_id": ..., "stock_key": ..., ...}

Movement-scoped fields (``LogContext``) are carried in contextvars so a
processor can bind ``transaction_id`` / ``stock_key`` once and every layer,
balance and lock log line below it picks them up, including lines emitted on
worker threads that set their own context.  Context fields take precedence
over ``extra`` keys of the same name.
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
from functools import singledispatch
from typing import Any, Iterator
from uuid import UUID

_CONTEXT_FIELDS = (
    "correlation_id",
    "transaction_id",
    "actor_id",
    "stock_key",
    "trace_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"coldstore_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


def _check_fields(fields: dict[str, Any]) -> None:
    unknown = set(fields) - set(_CONTEXT_FIELDS)
    if unknown:
        raise ValueError(f"Unknown log context fields: {sorted(unknown)}")


class LogContext:
    """Movement-scoped log fields, isolated per thread and per task."""

    @staticmethod
    def set(**fields: str | None) -> None:
        """Set fields for the rest of the current context; None values are skipped."""
        _check_fields(fields)
        for name, value in fields.items():
            if value is not None:
                _context_vars[name].set(value)

    @staticmethod
    def get_all() -> dict[str, str]:
        values = {name: var.get() for name, var in _context_vars.items()}
        return {name: value for name, value in values.items() if value is not None}

    @staticmethod
    def clear() -> None:
        for var in _context_vars.values():
            var.set(None)

    @staticmethod
    def bind(**fields: str | None):
        """Set fields for the duration of a ``with`` block, then restore them."""
        _check_fields(fields)
        return _bound(fields)


@contextmanager
def _bound(fields: dict[str, str | None]) -> Iterator[type[LogContext]]:
    tokens = [
        (_context_vars[name], _context_vars[name].set(value))
        for name, value in fields.items()
        if value is not None
    ]
    try:
        yield LogContext
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


# ---------------------------------------------------------------------------
# JSON rendering
# ---------------------------------------------------------------------------


@singledispatch
def _jsonable(value: Any) -> Any:
    return str(value)


@_jsonable.register
def _(value: Decimal) -> str:
    # Quantities and costs keep their exact digits
    return str(value)


@_jsonable.register
def _(value: UUID) -> str:
    return str(value)


@_jsonable.register
def _(value: date) -> str:
    return value.isoformat()


@_jsonable.register
def _(value: Enum) -> Any:
    return value.value


# Attributes every LogRecord has; anything else came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # ColdStoreError subclasses carry structured attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name not in ("args", "code"):
            fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record."""

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

        return json.dumps(payload, default=_jsonable)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

ROOT_LOGGER = "coldstore"


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``coldstore`` namespace, e.g. ``coldstore.engines.costing.fifo``."""
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")


_setup_lock = threading.Lock()
_configured = False


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach a JSON handler to the ``coldstore`` logger.

    Only the first call has an effect; ``level`` may be a name such as
    ``EngineSettings.log_level``.
    """
    global _configured
    with _setup_lock:
        if _configured:
            return
        _configured = True

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(level.upper() if isinstance(level, str) else level)
    root.propagate = False
    root.addHandler(handler)


def reset_logging() -> None:
    """Detach handlers and allow reconfiguration. FOR TESTING ONLY."""
    global _configured
    with _setup_lock:
        _configured = False
    root = logging.getLogger(ROOT_LOGGER)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
