"""
Structured JSON logging for the tax engine.

Every module logs through ``get_logger(...)`` under the ``tax_kernel``
namespace.  Records are rendered one JSON object per line: the envelope
(``ts``, ``level``, ``logger``, ``message``), the fields bound in
``LogContext`` for the current client/period/declaration, the ``extra``
dict of the call, and for raised tax errors their ``code`` and structured
attributes as ``exc_*`` keys.  Amounts are logged as strings so that
Decimal precision survives.
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
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

_ROOT = "tax_kernel"

# Fields a caller may bind for the duration of an operation.
CONTEXT_FIELDS: tuple[str, ...] = (
    "correlation_id",
    "actor_id",
    "client_id",
    "person_id",
    "declaration_id",
    "tax_type",
    "period",
)

_context: ContextVar[dict[str, str]] = ContextVar("tax_log_context", default={})


class LogContext:
    """
    Request-scoped log fields, safe across threads and tasks.

    Values are stored as strings; unknown field names and None values are
    ignored.
    """

    @staticmethod
    def _clean(fields: dict[str, Any]) -> dict[str, str]:
        return {k: str(v) for k, v in fields.items() if k in CONTEXT_FIELDS and v is not None}

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Add or overwrite fields for the rest of the current context."""
        _context.set({**_context.get(), **cls._clean(fields)})

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return dict(_context.get())

    @classmethod
    def clear(cls) -> None:
        _context.set({})

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Set fields inside the block; the previous values come back on exit."""
        token = _context.set({**_context.get(), **cls._clean(fields)})
        try:
            yield cls
        finally:
            _context.reset(token)


# Attributes every LogRecord has; anything else on a record came from ``extra``.
_RECORD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}

_EXC_ATTRS_SKIPPED = frozenset({"args", "code", "message"})


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (Decimal, UUID)):
        return str(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **LogContext.get_all(),
        }
        entry.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in entry
        )
        if record.exc_info and record.exc_info[1] is not None:
            entry.update(self._exception_fields(record.exc_info[1]))
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=_json_default)

    @staticmethod
    def _exception_fields(exc: BaseException) -> dict[str, Any]:
        fields: dict[str, Any] = {
            "exc_type": type(exc).__name__,
            "exc_message": str(exc),
        }
        code = getattr(exc, "code", None)
        if code is not None:
            fields["exc_code"] = code
        for name, value in vars(exc).items():
            if not name.startswith("_") and name not in _EXC_ATTRS_SKIPPED:
                fields[f"exc_{name}"] = value
        return fields


def get_logger(name: str) -> logging.Logger:
    """Logger named ``tax_kernel.<name>``."""
    return logging.getLogger(f"{_ROOT}.{name}")


_configured = False
_configure_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """
    Attach one JSON handler to the ``tax_kernel`` logger.

    Only the first call has any effect until ``reset_logging``.
    """
    global _configured
    with _configure_lock:
        if _configured:
            return
        _configured = True
        root = logging.getLogger(_ROOT)
        root.setLevel(level)
        root.propagate = False
        target = handler or logging.StreamHandler(stream or sys.stderr)
        target.setFormatter(StructuredFormatter())
        root.addHandler(target)


def reset_logging() -> None:
    """Drop handlers and allow ``configure_logging`` again.  Tests only."""
    global _configured
    with _configure_lock:
        _configured = False
        root = logging.getLogger(_ROOT)
        for h in list(root.handlers):
            root.removeHandler(h)
        root.setLevel(logging.WARNING)
