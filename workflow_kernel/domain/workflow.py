"""
Workflow domain types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval-workflow engine.  Defines the instance
and assignment lifecycles, the action vocabulary, template input specs,
read-side records, and the next-step decision returned by the transition
engine.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``INSTANCE_TRANSITIONS`` defines the only valid
  status transitions.  Terminal states have no outgoing edges.
* Decisions are a closed set -- ``Advance``, ``RejectTo``, ``Terminal`` and
  ``Stay`` are the only outcomes of evaluating an action.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from workflow_kernel.domain.conditions import Condition


# =========================================================================
# Lifecycles
# =========================================================================


class InstanceStatus(str, Enum):
    """Workflow instance lifecycle states."""

    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    REJECTED = "REJECTED"


INSTANCE_TRANSITIONS: dict[InstanceStatus, frozenset[InstanceStatus]] = {
    InstanceStatus.ACTIVE: frozenset({
        InstanceStatus.ACTIVE,
        InstanceStatus.COMPLETED,
        InstanceStatus.REJECTED,
    }),
    InstanceStatus.COMPLETED: frozenset(),
    InstanceStatus.REJECTED: frozenset(),
}

TERMINAL_INSTANCE_STATUSES: frozenset[InstanceStatus] = frozenset({
    InstanceStatus.COMPLETED,
    InstanceStatus.REJECTED,
})


class AssignmentStatus(str, Enum):
    """Per-visit assignment states.  A row is opened PENDING and closed once."""

    PENDING = "PENDING"
    COMPLETED = "COMPLETED"


class ActionType(str, Enum):
    """Actions an assignee can submit against an instance."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"
    MODIFY = "MODIFY"


def can_transition(current: InstanceStatus, target: InstanceStatus) -> bool:
    return target in INSTANCE_TRANSITIONS.get(current, frozenset())


# =========================================================================
# Template input specs
# =========================================================================


@dataclass(frozen=True)
class StepSpec:
    """One step of a template definition as submitted by the caller.

    ``key`` correlates the step with transitions and rejection targets in
    the same submission.  When omitted, ``str(order)`` is used.
    """

    name: str
    order: int
    role_id: UUID
    key: str | None = None
    mandatory: bool = True
    can_modify: bool = False
    rejection_step: str | None = None

    @property
    def correlation_key(self) -> str:
        return self.key if self.key is not None else str(self.order)


@dataclass(frozen=True)
class TransitionSpec:
    """A directed edge between two step keys, optionally conditioned."""

    from_step: str
    to_step: str
    condition_type: str | None = None
    condition_value: dict[str, Any] | None = None


# =========================================================================
# Read-side records
# =========================================================================


@dataclass(frozen=True)
class UserRef:
    id: UUID
    name: str


@dataclass(frozen=True)
class StepRecord:
    id: UUID
    template_id: UUID
    key: str
    name: str
    order: int
    role_id: UUID
    is_mandatory: bool
    can_modify: bool
    rejection_step_id: UUID | None


@dataclass(frozen=True)
class TransitionRecord:
    id: UUID
    template_id: UUID
    from_step_id: UUID
    to_step_id: UUID
    sequence: int
    condition: Condition | None = None


@dataclass(frozen=True)
class TemplateSummary:
    id: UUID
    name: str
    description: str | None
    is_active: bool
    created_at: datetime


@dataclass(frozen=True)
class TemplateRecord:
    """A published template with its steps (by order) and edges (by sequence)."""

    id: UUID
    name: str
    description: str | None
    is_active: bool
    created_at: datetime
    steps: tuple[StepRecord, ...] = ()
    transitions: tuple[TransitionRecord, ...] = ()

    @property
    def summary(self) -> TemplateSummary:
        return TemplateSummary(
            id=self.id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            created_at=self.created_at,
        )

    def step_by_key(self, key: str) -> StepRecord | None:
        for step in self.steps:
            if step.key == key:
                return step
        return None


@dataclass(frozen=True)
class InstanceRecord:
    id: UUID
    template_id: UUID
    current_step_id: UUID
    current_assignee_id: UUID | None
    entity_type: str
    entity_id: str
    status: InstanceStatus
    created_at: datetime
    completed_at: datetime | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_INSTANCE_STATUSES


@dataclass(frozen=True)
class AssignmentRecord:
    id: UUID
    instance_id: UUID
    step_id: UUID
    assignee_id: UUID
    status: AssignmentStatus
    visit: int
    assigned_at: datetime
    completed_at: datetime | None = None


@dataclass(frozen=True)
class ActionRecord:
    id: UUID
    instance_id: UUID
    step_id: UUID
    actor_id: UUID
    action_type: ActionType
    sequence: int
    created_at: datetime
    comments: str | None = None
    data_modifications: dict[str, Any] | None = None
    context: dict[str, Any] | None = None


@dataclass(frozen=True)
class AssignedWorkflow:
    """An instance enriched with its template, current step and assignee."""

    instance: InstanceRecord
    template: TemplateSummary
    current_step: StepRecord
    current_assignee: UserRef | None


# =========================================================================
# Next-step decisions
# =========================================================================


class DecisionKind(str, Enum):
    ADVANCE = "advance"
    REJECT_TO = "reject_to"
    TERMINAL = "terminal"
    STAY = "stay"


@dataclass(frozen=True)
class Advance:
    """Move forward along a satisfied transition."""

    step_id: UUID
    transition_id: UUID | None = None
    kind: DecisionKind = field(default=DecisionKind.ADVANCE, init=False)


@dataclass(frozen=True)
class RejectTo:
    """Route back to the current step's rejection target."""

    step_id: UUID
    kind: DecisionKind = field(default=DecisionKind.REJECT_TO, init=False)


@dataclass(frozen=True)
class Terminal:
    """Close the instance with the given outcome."""

    outcome: InstanceStatus
    kind: DecisionKind = field(default=DecisionKind.TERMINAL, init=False)

    def __post_init__(self) -> None:
        if self.outcome not in TERMINAL_INSTANCE_STATUSES:
            raise ValueError(f"Terminal outcome must be terminal, got {self.outcome}")


@dataclass(frozen=True)
class Stay:
    """No step change (MODIFY on a modifiable step)."""

    kind: DecisionKind = field(default=DecisionKind.STAY, init=False)


NextStepDecision = Advance | RejectTo | Terminal | Stay


@dataclass(frozen=True)
class ActionOutcome:
    """Result of applying one accepted action."""

    instance: InstanceRecord
    action: ActionRecord
    decision: NextStepDecision
    previous_step_id: UUID
