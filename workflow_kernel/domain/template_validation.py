"""
Template definition validation (``workflow_kernel.domain.template_validation``).

Pure structural checks over a submitted template definition.  Every problem
is collected so the caller sees the complete list at once; the template
service turns a non-empty list into a ``ValidationError``.

Role existence is checked against a set of known role ids supplied by the
caller, so this module stays free of I/O.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Sequence
from uuid import UUID

from workflow_kernel.domain.conditions import (
    Condition,
    ConditionParseError,
    parse_condition,
)
from workflow_kernel.domain.input_validation import (
    STEP_KEY_MAX_LENGTH,
    STEP_NAME_MAX_LENGTH,
    TEMPLATE_NAME_MAX_LENGTH,
    check_length,
    field_error as _error,
)
from workflow_kernel.domain.workflow import StepSpec, TransitionSpec


@dataclass(frozen=True)
class TemplateValidationResult:
    field_errors: tuple[dict[str, Any], ...] = ()
    warnings: tuple[dict[str, Any], ...] = ()
    # Parsed condition per transition, index-aligned with the input.
    conditions: tuple[Condition | None, ...] = field(default=())

    @property
    def is_valid(self) -> bool:
        return not self.field_errors


def validate_template_definition(
    name: str,
    steps: Sequence[StepSpec],
    transitions: Sequence[TransitionSpec],
    known_role_ids: set[UUID],
) -> TemplateValidationResult:
    errors: list[dict[str, Any]] = []
    warnings: list[dict[str, Any]] = []

    if not name or not name.strip():
        errors.append(_error("name", "EMPTY_NAME", "Template name is required"))
    else:
        errors.extend(check_length("name", name, TEMPLATE_NAME_MAX_LENGTH))

    if not steps:
        errors.append(_error("steps", "NO_STEPS", "A template needs at least one step"))

    order_counts = Counter(
        s.order for s in steps if isinstance(s.order, int) and not isinstance(s.order, bool)
    )
    key_counts = Counter(s.correlation_key for s in steps)
    keys = set(key_counts)

    for i, step in enumerate(steps):
        prefix = f"steps[{i}]"
        if not step.name or not step.name.strip():
            errors.append(_error(f"{prefix}.name", "EMPTY_STEP_NAME", "Step name is required"))
        else:
            errors.extend(check_length(f"{prefix}.name", step.name, STEP_NAME_MAX_LENGTH))
        errors.extend(check_length(f"{prefix}.key", step.key, STEP_KEY_MAX_LENGTH))

        if not isinstance(step.order, int) or isinstance(step.order, bool) or step.order < 1:
            errors.append(_error(
                f"{prefix}.order", "INVALID_STEP_ORDER",
                "Step order must be an integer >= 1", step.order,
            ))
        elif order_counts[step.order] > 1:
            errors.append(_error(
                f"{prefix}.order", "DUPLICATE_STEP_ORDER",
                f"Step order {step.order} is used more than once", step.order,
            ))

        # Default keys collide exactly when orders do; that is reported above.
        if key_counts[step.correlation_key] > 1 and step.key is not None:
            errors.append(_error(
                f"{prefix}.key", "DUPLICATE_STEP_KEY",
                f"Step key {step.key!r} is used more than once", step.key,
            ))

        if step.role_id not in known_role_ids:
            errors.append(_error(
                f"{prefix}.role_id", "UNKNOWN_ROLE",
                "Role does not exist", str(step.role_id),
            ))

        if step.rejection_step is not None and step.rejection_step not in keys:
            errors.append(_error(
                f"{prefix}.rejection_step", "UNKNOWN_REJECTION_TARGET",
                "Rejection target is not a step of this template", step.rejection_step,
            ))

    conditions: list[Condition | None] = []
    unconditioned_by_source: Counter[str] = Counter()
    for j, edge in enumerate(transitions):
        prefix = f"transitions[{j}]"
        if edge.from_step not in keys:
            errors.append(_error(
                f"{prefix}.from_step", "UNKNOWN_TRANSITION_SOURCE",
                "Transition source is not a step of this template", edge.from_step,
            ))
        if edge.to_step not in keys:
            errors.append(_error(
                f"{prefix}.to_step", "UNKNOWN_TRANSITION_TARGET",
                "Transition target is not a step of this template", edge.to_step,
            ))

        try:
            condition = parse_condition(edge.condition_type, edge.condition_value)
        except ConditionParseError as exc:
            errors.append(_error(
                f"{prefix}.condition", "INVALID_CONDITION", exc.reason, edge.condition_type,
            ))
            condition = None
        conditions.append(condition)

        if edge.condition_type is None:
            unconditioned_by_source[edge.from_step] += 1

    for source, count in sorted(unconditioned_by_source.items()):
        if count > 1:
            warnings.append({
                "code": "AMBIGUOUS_UNCONDITIONED_TRANSITIONS",
                "from_step": source,
                "count": count,
            })

    return TemplateValidationResult(
        field_errors=tuple(errors),
        warnings=tuple(warnings),
        conditions=tuple(conditions),
    )
