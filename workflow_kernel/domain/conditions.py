"""
Transition condition kinds (``workflow_kernel.domain.conditions``).

Responsibility
--------------
The closed set of predicates a transition may carry, each with a typed
payload.  Payloads are parsed once when a template is created (malformed or
unknown kinds are rejected there) and stored in their canonical form.

Architecture position
---------------------
**Kernel domain layer** -- pure.  ZERO I/O.

Evaluation context
------------------
Predicates read dotted field paths from::

    {
        "entity": {"type": <entity type>, "id": <entity id>},
        "data": <action data modifications>,
        "context": <caller-supplied facts>,
    }

A path that does not resolve makes the predicate false.  Evaluation never
raises.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Mapping


class ConditionType(str, Enum):
    FIELD_EQUALS = "field_equals"
    FIELD_IN = "field_in"
    FIELD_COMPARE = "field_compare"
    FIELD_PRESENT = "field_present"
    ENTITY_TYPE = "entity_type"


COMPARE_OPERATORS: frozenset[str] = frozenset({"<", "<=", ">", ">=", "==", "!="})


class ConditionParseError(ValueError):
    """A condition payload does not fit its declared kind."""

    def __init__(self, condition_type: str | None, reason: str):
        self.condition_type = condition_type
        self.reason = reason
        super().__init__(f"Invalid condition {condition_type!r}: {reason}")


def build_evaluation_context(
    entity_type: str,
    entity_id: str,
    data: Mapping[str, Any] | None = None,
    context: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    return {
        "entity": {"type": entity_type, "id": entity_id},
        "data": dict(data or {}),
        "context": dict(context or {}),
    }


def resolve_field(field_path: str, context: Mapping[str, Any]) -> Any:
    """Resolve a dotted field path against a context dict.

    ``data.amount`` -> context["data"]["amount"]
    """
    current: Any = context
    for part in field_path.split("."):
        if isinstance(current, Mapping):
            current = current.get(part)
        else:
            return None
        if current is None:
            return None
    return current


def _same_value(actual: Any, expected: Any) -> bool:
    """Equality that keeps booleans apart from numbers (``True != 1``)."""
    if (type(actual) is bool) != (type(expected) is bool):
        return False
    return actual == expected


def _to_decimal(value: Any) -> Decimal | None:
    """Coerce a numeric-looking value to a finite Decimal, else None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, (float, str)):
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


@dataclass(frozen=True)
class FieldEquals:
    field: str
    value: Any

    condition_type = ConditionType.FIELD_EQUALS

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        actual = resolve_field(self.field, context)
        if actual is None:
            return False
        return _same_value(actual, self.value)

    def to_payload(self) -> dict[str, Any]:
        return {"field": self.field, "value": self.value}


@dataclass(frozen=True)
class FieldIn:
    field: str
    values: tuple[Any, ...]

    condition_type = ConditionType.FIELD_IN

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        actual = resolve_field(self.field, context)
        if actual is None:
            return False
        return any(_same_value(actual, expected) for expected in self.values)

    def to_payload(self) -> dict[str, Any]:
        return {"field": self.field, "values": list(self.values)}


@dataclass(frozen=True)
class FieldCompare:
    """Numeric comparison.  Non-numeric actual values never match."""

    field: str
    operator: str
    value: Decimal

    condition_type = ConditionType.FIELD_COMPARE

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        actual = _to_decimal(resolve_field(self.field, context))
        if actual is None:
            return False
        if self.operator == "<":
            return actual < self.value
        if self.operator == "<=":
            return actual <= self.value
        if self.operator == ">":
            return actual > self.value
        if self.operator == ">=":
            return actual >= self.value
        if self.operator == "==":
            return actual == self.value
        return actual != self.value

    def to_payload(self) -> dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": str(self.value)}


@dataclass(frozen=True)
class FieldPresent:
    field: str

    condition_type = ConditionType.FIELD_PRESENT

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        return resolve_field(self.field, context) is not None

    def to_payload(self) -> dict[str, Any]:
        return {"field": self.field}


@dataclass(frozen=True)
class EntityTypeIs:
    entity_types: tuple[str, ...]

    condition_type = ConditionType.ENTITY_TYPE

    def evaluate(self, context: Mapping[str, Any]) -> bool:
        return resolve_field("entity.type", context) in self.entity_types

    def to_payload(self) -> dict[str, Any]:
        return {"entity_types": list(self.entity_types)}


Condition = FieldEquals | FieldIn | FieldCompare | FieldPresent | EntityTypeIs


def _require_field(payload: Mapping[str, Any], condition_type: str) -> str:
    field_path = payload.get("field")
    if not isinstance(field_path, str) or not field_path.strip():
        raise ConditionParseError(condition_type, "'field' must be a non-empty string")
    if any(not part for part in field_path.split(".")):
        raise ConditionParseError(condition_type, f"malformed field path {field_path!r}")
    return field_path.strip()


def _require_scalar(value: Any, condition_type: str, name: str) -> Any:
    if isinstance(value, (str, int, float, bool)):
        return value
    raise ConditionParseError(condition_type, f"'{name}' must be a non-null scalar")


def parse_condition(
    condition_type: str | None,
    condition_value: Mapping[str, Any] | None,
) -> Condition | None:
    """Parse a stored or submitted condition into its typed form.

    Returns None for an unconditioned edge.

    Raises:
        ConditionParseError: unknown kind, or payload malformed for its kind.
    """
    if condition_type is None:
        if condition_value:
            raise ConditionParseError(None, "condition_value given without condition_type")
        return None

    try:
        kind = ConditionType(condition_type)
    except ValueError:
        raise ConditionParseError(condition_type, "unknown condition type") from None

    if not isinstance(condition_value, Mapping):
        raise ConditionParseError(condition_type, "condition_value must be an object")
    payload = condition_value

    if kind is ConditionType.FIELD_EQUALS:
        if "value" not in payload:
            raise ConditionParseError(condition_type, "'value' is required")
        return FieldEquals(
            field=_require_field(payload, condition_type),
            value=_require_scalar(payload["value"], condition_type, "value"),
        )

    if kind is ConditionType.FIELD_IN:
        values = payload.get("values")
        if not isinstance(values, (list, tuple)) or not values:
            raise ConditionParseError(condition_type, "'values' must be a non-empty list")
        return FieldIn(
            field=_require_field(payload, condition_type),
            values=tuple(_require_scalar(v, condition_type, "values") for v in values),
        )

    if kind is ConditionType.FIELD_COMPARE:
        operator = payload.get("operator")
        if operator not in COMPARE_OPERATORS:
            raise ConditionParseError(
                condition_type,
                f"'operator' must be one of {sorted(COMPARE_OPERATORS)}",
            )
        threshold = _to_decimal(payload.get("value"))
        if threshold is None:
            raise ConditionParseError(condition_type, "'value' must be a finite number")
        return FieldCompare(
            field=_require_field(payload, condition_type),
            operator=operator,
            value=threshold,
        )

    if kind is ConditionType.FIELD_PRESENT:
        return FieldPresent(field=_require_field(payload, condition_type))

    entity_types = payload.get("entity_types")
    if (
        not isinstance(entity_types, (list, tuple))
        or not entity_types
        or not all(isinstance(t, str) and t for t in entity_types)
    ):
        raise ConditionParseError(
            condition_type, "'entity_types' must be a non-empty list of strings"
        )
    return EntityTypeIs(entity_types=tuple(entity_types))
