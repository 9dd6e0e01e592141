"""
Structured logging for the materials ledger.

Responsibility:
    One JSON object per line for every log record under the
    ``materials_kernel`` logger.  Each line carries the ids of the action
    that produced it (correlation, request, dispatch, material, entry,
    actor) so one user action can be followed from the workflow record down
    to the movements it posted.

Architecture position:
    Kernel leaf.  Imports nothing from the rest of the package; every other
    module gets its logger from ``get_logger``.

Conventions:
    - Messages are snake_case event names (``movement_posted``,
      ``request_transitioned``); the data goes in ``extra``.
    - Quantities are written as Decimal strings, never floats.
    - A logged MaterialsKernelError contributes ``exc_code``,
      ``exc_retryable`` and its structured attributes as ``exc_<name>``.
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
from contextvars import ContextVar, Token
from datetime import UTC, date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "materials_kernel"

# ---------------------------------------------------------------------------
# Action context
# ---------------------------------------------------------------------------

_CONTEXT_FIELDS = (
    "correlation_id",
    "request_id",
    "dispatch_id",
    "material_id",
    "entry_id",
    "actor_id",
    "trace_id",
)

_context_vars: dict[str, ContextVar[str | None]] = {
    name: ContextVar(f"materials_log_{name}", default=None) for name in _CONTEXT_FIELDS
}


class LogContext:
    """
    Ids of the action in progress, carried in contextvars.

    Each worker thread (and each asyncio task) sees its own values, so
    concurrent actions never mix their ids.  Unknown field names are
    ignored; values are stored as strings (UUIDs are accepted).
    """

    fields = _CONTEXT_FIELDS

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set the given fields; ``None`` leaves a field unchanged."""
        for name, value in fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                var.set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in _context_vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in _context_vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: Any) -> "_Binding":
        """Set fields for the duration of a ``with`` block, then restore them."""
        return _Binding(fields)


class _Binding:
    def __init__(self, fields: dict[str, Any]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar[str | None], Token]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            var = _context_vars.get(name)
            if var is not None and value is not None:
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        while self._tokens:
            var, token = self._tokens.pop()
            var.reset(token)


# ---------------------------------------------------------------------------
# JSON lines
# ---------------------------------------------------------------------------

_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
        fields["exc_retryable"] = bool(getattr(exc, "retryable", False))
        for name, value in vars(exc).items():
            if not name.startswith("_") and name not in ("args", "code", "retryable"):
                fields[f"exc_{name}"] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """Render a record as one JSON line: envelope, action ids, extra, exception."""

    def format(self, record: logging.LogRecord) -> str:
        line: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        line.update(LogContext.get_all())
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRS and name not in line:
                line[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            line.update(_exception_fields(record.exc_info[1]))
            line["traceback"] = self.formatException(record.exc_info)

        return json.dumps(line, default=_json_default)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger ``materials_kernel.<name>``."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_lock = threading.Lock()
_installed: logging.Handler | None = None


def configure_logging(
    *,
    level: int | str = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Install the JSON handler on the ``materials_kernel`` logger.

    Only the first call installs a handler; later calls (every engine
    initialization makes one) leave the existing setup alone.  ``level``
    accepts a number or a name such as ``"DEBUG"``.
    """
    global _installed
    with _lock:
        if _installed is not None:
            return
        root = logging.getLogger(_LOGGER_PREFIX)
        root.setLevel(level.upper() if isinstance(level, str) else level)
        root.propagate = False
        _installed = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        _installed.setFormatter(StructuredFormatter())
        root.addHandler(_installed)


def reset_logging() -> None:
    """Remove the installed handler so the next configure_logging() applies. Tests only."""
    global _installed
    with _lock:
        root = logging.getLogger(_LOGGER_PREFIX)
        if _installed is not None:
            root.removeHandler(_installed)
            _installed = None
        root.setLevel(logging.WARNING)
