"""
Module: workflow_kernel.models.template
Responsibility: ORM persistence for workflow templates, their steps and the
    transitions between steps.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value objects only.

Invariants enforced:
    - Step order unique within a template and >= 1 (DB constraints).
    - Same-template integrity: rejection targets and transition endpoints are
      composite foreign keys on (step_id, template_id), so an edge can never
      point into another template.
    - Templates, steps and transitions are never deleted.
    - Steps and transitions are frozen once published.  The only permitted
      update on a step is the write-once rejection pointer; the only permitted
      update on a template is its active flag.

Failure modes:
    - IntegrityError on duplicate order / key or a cross-template edge.
    - ImmutabilityViolationError on a forbidden UPDATE or any DELETE.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    ForeignKey,
    ForeignKeyConstraint,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, JSONPayload, UUIDString
from workflow_kernel.domain.input_validation import (
    STEP_KEY_MAX_LENGTH,
    STEP_NAME_MAX_LENGTH,
    TEMPLATE_NAME_MAX_LENGTH,
)
from workflow_kernel.exceptions import ImmutabilityViolationError
from workflow_kernel.logging_config import get_logger

logger = get_logger("models.template")


class WorkflowTemplateModel(Base):
    """Persistent workflow template header.

    Contract:
        Identity and content are fixed at creation.  Deactivation only stops
        new instances; running instances keep working.
    """

    __tablename__ = "workflow_templates"

    name: Mapped[str] = mapped_column(String(TEMPLATE_NAME_MAX_LENGTH), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.id} {self.name!r} active={self.is_active}>"

    def to_summary(self):
        from workflow_kernel.domain.workflow import TemplateSummary

        return TemplateSummary(
            id=self.id,
            name=self.name,
            description=self.description,
            is_active=self.is_active,
            created_at=self.created_at,
        )


class WorkflowStepModel(Base):
    """One step of a template."""

    __tablename__ = "workflow_steps"

    __table_args__ = (
        UniqueConstraint("template_id", "step_order", name="uq_workflow_steps_template_order"),
        UniqueConstraint("template_id", "step_key", name="uq_workflow_steps_template_key"),
        # Target for the composite same-template foreign keys below and in
        # transitions / instances.
        UniqueConstraint("id", "template_id", name="uq_workflow_steps_id_template"),
        CheckConstraint("step_order >= 1", name="ck_workflow_steps_order_positive"),
        ForeignKeyConstraint(
            ["rejection_step_id", "template_id"],
            ["workflow_steps.id", "workflow_steps.template_id"],
            name="fk_workflow_steps_rejection_same_template",
        ),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    step_key: Mapped[str] = mapped_column(String(STEP_KEY_MAX_LENGTH), nullable=False)
    name: Mapped[str] = mapped_column(String(STEP_NAME_MAX_LENGTH), nullable=False)
    step_order: Mapped[int] = mapped_column(nullable=False)
    role_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("roles.id"), nullable=False,
    )
    is_mandatory: Mapped[bool] = mapped_column(default=True, nullable=False)
    can_modify: Mapped[bool] = mapped_column(default=False, nullable=False)
    rejection_step_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.id} order={self.step_order} {self.name!r}>"

    def to_dto(self):
        from workflow_kernel.domain.workflow import StepRecord

        return StepRecord(
            id=self.id,
            template_id=self.template_id,
            key=self.step_key,
            name=self.name,
            order=self.step_order,
            role_id=self.role_id,
            is_mandatory=self.is_mandatory,
            can_modify=self.can_modify,
            rejection_step_id=self.rejection_step_id,
        )


class WorkflowStepTransitionModel(Base):
    """Directed edge between two steps of the same template.

    ``sequence`` is the submission index of the edge within its template and
    fixes evaluation order: lower sequence is tried first.
    """

    __tablename__ = "workflow_step_transitions"

    __table_args__ = (
        UniqueConstraint("template_id", "sequence", name="uq_workflow_transitions_template_seq"),
        ForeignKeyConstraint(
            ["from_step_id", "template_id"],
            ["workflow_steps.id", "workflow_steps.template_id"],
            name="fk_workflow_transitions_from_same_template",
        ),
        ForeignKeyConstraint(
            ["to_step_id", "template_id"],
            ["workflow_steps.id", "workflow_steps.template_id"],
            name="fk_workflow_transitions_to_same_template",
        ),
        Index("ix_workflow_transitions_from_step", "from_step_id", "sequence"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    from_step_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    to_step_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    condition_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    condition_value: Mapped[dict[str, Any] | None] = mapped_column(JSONPayload, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<WorkflowStepTransition {self.from_step_id} -> {self.to_step_id} "
            f"seq={self.sequence} condition={self.condition_type}>"
        )

    def to_dto(self):
        from workflow_kernel.domain.conditions import parse_condition
        from workflow_kernel.domain.workflow import TransitionRecord

        return TransitionRecord(
            id=self.id,
            template_id=self.template_id,
            from_step_id=self.from_step_id,
            to_step_id=self.to_step_id,
            sequence=self.sequence,
            condition=parse_condition(self.condition_type, self.condition_value),
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


def _changed_fields(target) -> list[str]:
    return [attr.key for attr in inspect(target).attrs if attr.history.has_changes()]


def _block(entity_type: str, target, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
            "field": field,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


@event.listens_for(WorkflowTemplateModel, "before_update")
def prevent_template_update(mapper, connection, target):
    """Only the active flag of a template may change."""
    for key in _changed_fields(target):
        if key != "is_active":
            _block(
                "WorkflowTemplate", target, "UPDATE",
                f"Cannot modify field '{key}' on a published template", key,
            )


@event.listens_for(WorkflowStepModel, "before_update")
def prevent_step_update(mapper, connection, target):
    """Steps are frozen; the rejection pointer may be set once."""
    for key in _changed_fields(target):
        if key == "rejection_step_id":
            previous = inspect(target).attrs.rejection_step_id.history.deleted
            if not previous or previous[0] is None:
                continue
        _block(
            "WorkflowStep", target, "UPDATE",
            f"Cannot modify field '{key}' on a published step", key,
        )


@event.listens_for(WorkflowStepTransitionModel, "before_update")
def prevent_transition_update(mapper, connection, target):
    _block(
        "WorkflowStepTransition", target, "UPDATE",
        "Workflow transitions are immutable -- cannot modify",
    )


@event.listens_for(WorkflowTemplateModel, "before_delete")
def prevent_template_delete(mapper, connection, target):
    _block("WorkflowTemplate", target, "DELETE", "Workflow templates cannot be deleted")


@event.listens_for(WorkflowStepModel, "before_delete")
def prevent_step_delete(mapper, connection, target):
    _block("WorkflowStep", target, "DELETE", "Workflow steps cannot be deleted")


@event.listens_for(WorkflowStepTransitionModel, "before_delete")
def prevent_transition_delete(mapper, connection, target):
    _block(
        "WorkflowStepTransition", target, "DELETE",
        "Workflow transitions cannot be deleted",
    )
