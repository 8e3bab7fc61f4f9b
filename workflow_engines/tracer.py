"""
workflow_engines.tracer -- Engine invocation tracer emitting WORKFLOW_ENGINE_TRACE.

Responsibility:
    A lightweight decorator (``@traced_engine``) that wraps pure engine
    invocations with a structured trace record: engine name, version, a
    deterministic fingerprint of selected inputs, and duration.

Architecture position:
    Engines -- infrastructure support for the pure evaluation layer.
    Emits a log record only; does not touch inputs or outputs.  Uses the
    ``workflow_kernel.engines.tracer`` logger so engines need not import
    kernel logging setup.

Usage:
    @traced_engine("transition", "1.0", fingerprint_fields=("action_type",))
    def compute_next(*, step, transitions, action_type, context):
        ...
"""

from __future__ import annotations

import functools
import hashlib
import logging
import time
from collections.abc import Callable
from enum import Enum
from typing import Any

_logger = logging.getLogger("workflow_kernel.engines.tracer")


def _canonicalize(value: Any) -> str:
    """Stable string form of a value for fingerprinting."""
    if value is None:
        return "null"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, (int, float, str)):
        return str(value)
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{k}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(v) for v in value) + "]"
    return str(value)


def compute_input_fingerprint(
    fingerprint_fields: tuple[str, ...],
    kwargs: dict[str, Any],
) -> str:
    """SHA-256 prefix (16 hex chars) over the named kwargs.  Missing ones count as null."""
    canonical = "|".join(
        f"{name}={_canonicalize(kwargs.get(name))}" for name in fingerprint_fields
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            fp = compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""

            t0 = time.monotonic()
            result = func(*args, **kwargs)
            duration_ms = round((time.monotonic() - t0) * 1000, 2)

            _logger.debug(
                "WORKFLOW_ENGINE_TRACE",
                extra={
                    "trace_type": "WORKFLOW_ENGINE_TRACE",
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fp,
                    "duration_ms": duration_ms,
                    "function": func.__qualname__,
                },
            )
            return result

        return wrapper

    return decorator
