"""
Structured logging for the colony ledger.

Responsibility:
    Renders every record of the ``colony_ledger`` logger tree as one JSON
    object per line, stamped with the operation context bound by the
    ledger engine (operation name, operator, dome, transfer id and the
    stock keys the operation locks).

Architecture position:
    Kernel -- zero dependencies on services or configuration.  Imported by
    every kernel module that logs.

Error envelopes:
    A record carrying exc_info gets an ``error`` object.  For a
    ColonyLedgerError it holds the machine-readable code, the retryable
    flag and the error's structured attributes; other exceptions carry
    type and message plus a traceback.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "LogContext",
    "StructuredFormatter",
    "configure_logging",
    "error_envelope",
    "get_logger",
    "reset_logging",
]

import json
import logging
import sys
import threading
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any
from uuid import UUID

from colony_ledger.exceptions import ColonyLedgerError

LOGGER_NAMESPACE = "colony_ledger"

CONTEXT_FIELDS = ("operation", "operator_id", "dome_id", "transfer_id", "stock_keys")

_EMPTY: Mapping[str, str] = MappingProxyType({})
_context: ContextVar[Mapping[str, str]] = ContextVar("colony_ledger_log_context", default=_EMPTY)


class LogContext:
    """Operation-scoped fields merged into every record (contextvar-backed)."""

    @staticmethod
    def current() -> dict[str, str]:
        return dict(_context.get())

    @staticmethod
    @contextmanager
    def bind(**fields: Any) -> Iterator[None]:
        """
        Layer fields over the current context for the duration of the block.

        None values leave the outer value in place.  UUIDs and other ids
        are stored as strings.

        Raises:
            ValueError: For a field name outside CONTEXT_FIELDS.
        """
        unknown = set(fields) - set(CONTEXT_FIELDS)
        if unknown:
            raise ValueError(f"Unknown log context fields: {sorted(unknown)}")
        merged = dict(_context.get())
        merged.update({name: str(value) for name, value in fields.items() if value is not None})
        token = _context.set(MappingProxyType(merged))
        try:
            yield
        finally:
            _context.reset(token)

    @staticmethod
    def clear() -> None:
        _context.set(_EMPTY)


def error_envelope(exc: BaseException) -> dict[str, Any]:
    """Machine-readable summary of an exception for a log payload."""
    envelope: dict[str, Any] = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, ColonyLedgerError):
        envelope["code"] = exc.code
        envelope["retryable"] = exc.retryable
        details = {
            name: value
            for name, value in vars(exc).items()
            if not name.startswith("_") and name not in ("code", "retryable")
        }
        if details:
            envelope["details"] = details
    return envelope


def _json_default(obj: Any) -> Any:
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    return repr(obj)


# LogRecord attributes that are never payload fields
_RECORD_ATTRIBUTES = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class StructuredFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, event, context, extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for name, value in vars(record).items():
            if name not in _RECORD_ATTRIBUTES and name not in payload:
                payload[name] = value
        # An explicit extra wins over the bound context
        for name, value in _context.get().items():
            payload.setdefault(name, value)

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["error"] = error_envelope(exc)
            if not isinstance(exc, ColonyLedgerError):
                payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under the colony_ledger namespace."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_HANDLER_NAME = "colony_ledger.structured"
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> logging.Handler:
    """
    Attach the structured handler to the colony_ledger logger.

    Idempotent: once a structured handler is attached, later calls return
    it unchanged (level included).
    """
    root = logging.getLogger(LOGGER_NAMESPACE)
    with _lock:
        for existing in root.handlers:
            if existing.get_name() == _HANDLER_NAME:
                return existing

        new_handler = handler if handler is not None else logging.StreamHandler(stream or sys.stderr)
        new_handler.set_name(_HANDLER_NAME)
        new_handler.setFormatter(StructuredFormatter())
        root.addHandler(new_handler)
        root.setLevel(level)
        root.propagate = False
        return new_handler


def reset_logging() -> None:
    """Detach the structured handler. Test helper."""
    root = logging.getLogger(LOGGER_NAMESPACE)
    with _lock:
        for existing in list(root.handlers):
            if existing.get_name() == _HANDLER_NAME:
                root.removeHandler(existing)
        root.setLevel(logging.WARNING)
