"""
Structured JSON logging for the fees kernel.

Every record is one JSON line:

    {"ts": ..., "level": ..., "logger": "fees_kernel.<area>", "message": "<event>",
     <LogContext fields>, <extra fields>, <exc_* fields when an exception is attached>}

LogContext carries the identifiers of the payment being processed
(transaction_id, student_id, operator_id, correlation_id, trace_id) so
every record emitted while handling it can be correlated without passing
them down explicitly.  Context values win over an ``extra`` of the same
name.

Phone numbers (payer, parent, recipient) are masked to their last three
digits; the full number stays in the database and the outbox.
"""

__all__ = [
    "StructuredFormatter",
    "LogContext",
    "get_logger",
    "configure_logging",
    "mask_phone",
    "reset_logging",
]

import json
import logging
import sys
import threading
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

_LOGGER_PREFIX = "fees_kernel"

_PHONE_FIELDS = frozenset({"payer_phone", "parent_phone", "phone_number", "recipient"})


# ---------------------------------------------------------------------------
# Context
# ---------------------------------------------------------------------------


class LogContext:
    """Request-scoped log fields held in context variables."""

    _FIELD_NAMES = (
        "correlation_id",
        "transaction_id",
        "student_id",
        "operator_id",
        "trace_id",
    )

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"fees_log_{name}", default=None) for name in _FIELD_NAMES
    }

    @classmethod
    def set(cls, **fields: str | None) -> None:
        """Set the given fields; None leaves a field unchanged."""
        for name, value in fields.items():
            if value is not None:
                cls._var(name).set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: value
            for name, var in cls._vars.items()
            if (value := var.get()) is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    def bind(cls, **fields: str | None) -> "_BoundContext":
        """Set fields for the duration of a ``with`` block."""
        return _BoundContext(fields)

    @classmethod
    def _var(cls, name: str) -> ContextVar[str | None]:
        try:
            return cls._vars[name]
        except KeyError:
            raise ValueError(f"Unknown log context field {name!r}") from None


class _BoundContext:
    def __init__(self, fields: dict[str, str | None]):
        self._fields = fields
        self._tokens: list[tuple[ContextVar, Any]] = []

    def __enter__(self) -> type[LogContext]:
        for name, value in self._fields.items():
            if value is not None:
                var = LogContext._var(name)
                self._tokens.append((var, var.set(str(value))))
        return LogContext

    def __exit__(self, *exc: Any) -> None:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens.clear()


# ---------------------------------------------------------------------------
# Formatter
# ---------------------------------------------------------------------------

_STDLIB_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None)).keys()
) | {"message", "taskName"}


def mask_phone(value: Any) -> Any:
    """'254712345678' -> '*********678'."""
    if not isinstance(value, str) or len(value) <= 3:
        return value
    return "*" * (len(value) - 3) + value[-3:]


class _JSONEncoder(json.JSONEncoder):
    def default(self, obj: Any) -> Any:
        if isinstance(obj, (UUID, Decimal)):
            return str(obj)
        if isinstance(obj, datetime):
            return obj.isoformat()
        return super().default(obj)


class StructuredFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(LogContext.get_all())

        for key, value in vars(record).items():
            if key in _STDLIB_KEYS or key in payload:
                continue
            payload[key] = mask_phone(value) if key in _PHONE_FIELDS else value

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            code = getattr(exc, "code", None)
            if code is not None:
                payload["exc_code"] = code
            # FeesKernelError subclasses keep their context as attributes
            for key, value in vars(exc).items():
                if not key.startswith("_") and key not in ("args", "code"):
                    payload[f"exc_{key}"] = value
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, cls=_JSONEncoder, default=str)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def get_logger(name: str) -> logging.Logger:
    """Logger under the fees_kernel namespace, e.g. get_logger("services.intake_gateway")."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int = logging.INFO,
    stream: Any = None,
    handler: logging.Handler | None = None,
) -> None:
    """Attach one JSON handler to the fees_kernel hierarchy.  Idempotent."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False

    if handler is None:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Undo configure_logging (tests only)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
