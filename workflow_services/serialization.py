"""JSON-safe rendering of engine results for the RPC layer."""

from __future__ import annotations

import dataclasses
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from workflow_kernel.domain.conditions import Condition


def to_payload(value: Any) -> Any:
    """Recursively convert DTOs into plain JSON-compatible structures.

    UUID -> str, datetime -> ISO 8601, Enum -> value, Decimal -> str,
    dataclass -> dict, tuple -> list.  A transition condition becomes the
    tagged pair ``{"condition_type", "condition_value"}`` that template
    creation accepts.
    """
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Condition):
        return {
            "condition_type": value.condition_type.value,
            "condition_value": to_payload(value.to_payload()),
        }
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {
            f.name: to_payload(getattr(value, f.name))
            for f in dataclasses.fields(value)
        }
    if isinstance(value, dict):
        return {str(k): to_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_payload(v) for v in value]
    return str(value)
