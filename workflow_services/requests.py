"""
Boundary request shapes (``workflow_services.requests``).

The RPC layer hands the engine plain dicts; these frozen dataclasses give
them a fixed shape and convert identifiers to UUIDs.  A malformed payload
raises ``ValidationError`` with field-level detail, just like a malformed
template definition.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from workflow_kernel.domain.workflow import StepSpec, TransitionSpec
from workflow_kernel.exceptions import ValidationError


def _as_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _key(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _flag(
    raw: Mapping[str, Any], name: str, default: bool, field: str, errors: list[dict[str, Any]],
) -> bool:
    value = raw.get(name, default)
    if isinstance(value, bool):
        return value
    errors.append({
        "field": field, "code": "NOT_A_BOOLEAN",
        "message": f"{name} must be true or false", "value": value,
    })
    return default


@dataclass(frozen=True)
class StepInput:
    name: str
    order: int
    role_id: UUID
    key: str | None = None
    mandatory: bool = True
    can_modify: bool = False
    rejection_step: str | None = None

    def to_spec(self) -> StepSpec:
        return StepSpec(
            name=self.name,
            order=self.order,
            role_id=self.role_id,
            key=self.key,
            mandatory=self.mandatory,
            can_modify=self.can_modify,
            rejection_step=self.rejection_step,
        )


@dataclass(frozen=True)
class TransitionInput:
    from_step: str
    to_step: str
    condition_type: str | None = None
    condition_value: dict[str, Any] | None = None

    def to_spec(self) -> TransitionSpec:
        return TransitionSpec(
            from_step=self.from_step,
            to_step=self.to_step,
            condition_type=self.condition_type,
            condition_value=self.condition_value,
        )


@dataclass(frozen=True)
class CreateWorkflowTemplateRequest:
    name: str
    description: str | None = None
    steps: tuple[StepInput, ...] = ()
    transitions: tuple[TransitionInput, ...] = ()

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> CreateWorkflowTemplateRequest:
        """Parse an RPC payload.

        Step and transition references may be given as keys or orders;
        both are normalized to strings.
        """
        name = payload.get("name") or ""
        errors: list[dict[str, Any]] = []

        raw_steps = payload.get("steps") or []
        raw_transitions = payload.get("transitions") or []
        if not isinstance(raw_steps, list):
            errors.append({"field": "steps", "code": "NOT_A_LIST", "message": "steps must be a list"})
            raw_steps = []
        if not isinstance(raw_transitions, list):
            errors.append({
                "field": "transitions", "code": "NOT_A_LIST",
                "message": "transitions must be a list",
            })
            raw_transitions = []

        steps: list[StepInput] = []
        for i, raw in enumerate(raw_steps):
            if not isinstance(raw, Mapping):
                errors.append({
                    "field": f"steps[{i}]", "code": "NOT_AN_OBJECT",
                    "message": "step must be an object",
                })
                continue
            role_id = _as_uuid(raw.get("role_id"))
            if role_id is None:
                errors.append({
                    "field": f"steps[{i}].role_id", "code": "INVALID_ID",
                    "message": "role_id must be a UUID", "value": raw.get("role_id"),
                })
                continue
            mandatory = _flag(raw, "mandatory", True, f"steps[{i}].mandatory", errors)
            can_modify = _flag(raw, "can_modify", False, f"steps[{i}].can_modify", errors)
            order = raw.get("order")
            if isinstance(order, str) and order.strip().isdigit():
                order = int(order)
            steps.append(StepInput(
                name=str(raw.get("name") or ""),
                order=order,
                role_id=role_id,
                key=_key(raw.get("key")),
                mandatory=mandatory,
                can_modify=can_modify,
                rejection_step=_key(raw.get("rejection_step")),
            ))

        transitions: list[TransitionInput] = []
        for j, raw in enumerate(raw_transitions):
            if not isinstance(raw, Mapping):
                errors.append({
                    "field": f"transitions[{j}]", "code": "NOT_AN_OBJECT",
                    "message": "transition must be an object",
                })
                continue
            transitions.append(TransitionInput(
                from_step=_key(raw.get("from_step")) or "",
                to_step=_key(raw.get("to_step")) or "",
                condition_type=raw.get("condition_type"),
                condition_value=raw.get("condition_value"),
            ))

        if errors:
            raise ValidationError(str(name), errors)

        return cls(
            name=str(name),
            description=payload.get("description"),
            steps=tuple(steps),
            transitions=tuple(transitions),
        )
