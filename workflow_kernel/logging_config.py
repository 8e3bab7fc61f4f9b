"""
Structured JSON logging for the workflow kernel.

Every record under the ``workflow_kernel`` logger becomes one JSON line
carrying the message, the ``extra`` fields passed at the call site, and
whichever request-scoped ids (correlation, instance, template, actor) are
bound in ``LogContext`` at the time.
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
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Iterator
from uuid import UUID

_LOGGER_PREFIX = "workflow_kernel"


class LogContext:
    """Request-scoped ids stamped onto every record (contextvar backed)."""

    _vars: dict[str, ContextVar[str | None]] = {
        name: ContextVar(f"workflow_log_{name}", default=None)
        for name in ("correlation_id", "instance_id", "template_id", "actor_id")
    }

    @classmethod
    def set(cls, **fields: Any) -> None:
        """Set the named ids; None values and unknown names are skipped."""
        for name, value in fields.items():
            if value is not None and name in cls._vars:
                cls._vars[name].set(str(value))

    @classmethod
    def get_all(cls) -> dict[str, str]:
        return {
            name: var.get() for name, var in cls._vars.items() if var.get() is not None
        }

    @classmethod
    def clear(cls) -> None:
        for var in cls._vars.values():
            var.set(None)

    @classmethod
    @contextmanager
    def bind(cls, **fields: Any) -> Iterator[type["LogContext"]]:
        """Bind ids for the duration of a block, restoring the outer values."""
        tokens = [
            (cls._vars[name], cls._vars[name].set(str(value)))
            for name, value in fields.items()
            if value is not None and name in cls._vars
        ]
        try:
            yield cls
        finally:
            for var, token in reversed(tokens):
                var.reset(token)


# Attributes every LogRecord has; anything else came in through ``extra``.
_RECORD_KEYS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "taskName"}


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (UUID, Decimal)):
        return str(obj)
    return repr(obj)


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
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_KEYS and key not in payload
        )

        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            payload["exc_type"] = type(exc).__name__
            payload["exc_message"] = str(exc)
            # WorkflowKernelError subclasses carry a code plus typed attributes.
            if hasattr(exc, "code"):
                payload["exc_code"] = exc.code
            payload.update(
                (f"exc_{key}", value)
                for key, value in vars(exc).items()
                if not key.startswith("_") and key != "code"
            )
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger under the ``workflow_kernel`` namespace."""
    return logging.getLogger(f"{_LOGGER_PREFIX}.{name}")


_configured = False
_lock = threading.Lock()


def configure_logging(
    *,
    level: int | str = logging.INFO,
    handler: logging.Handler | None = None,
) -> None:
    """Attach a JSON handler to the ``workflow_kernel`` logger once per process."""
    global _configured
    with _lock:
        if _configured:
            return
        _configured = True

    root = logging.getLogger(_LOGGER_PREFIX)
    root.setLevel(level)
    root.propagate = False
    handler = handler if handler is not None else logging.StreamHandler(sys.stderr)
    handler.setFormatter(StructuredFormatter())
    root.addHandler(handler)


def reset_logging() -> None:
    """Detach handlers so the next configure_logging() applies (tests only)."""
    global _configured
    with _lock:
        _configured = False
    root = logging.getLogger(_LOGGER_PREFIX)
    root.handlers.clear()
    root.setLevel(logging.WARNING)
