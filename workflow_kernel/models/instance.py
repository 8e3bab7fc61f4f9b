"""
Module: workflow_kernel.models.instance
Responsibility: ORM persistence for running workflow instances, their
    per-visit step assignments, and the append-only action history.

Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ value objects only.

Invariants enforced:
    - Same-template integrity: (current_step_id, template_id) is a composite
      foreign key into workflow_steps.
    - Status values are constrained; an ACTIVE instance always has an
      assignee and no completion time; a terminal one has a completion time.
    - The template of an instance never changes.
    - A terminal instance is frozen.
    - Optimistic concurrency: ``version`` is the mapper version counter, so a
      writer holding a stale snapshot fails with StaleDataError.
    - Actions are append-only: UNIQUE(instance_id, sequence), no UPDATE,
      no DELETE.
    - Assignments are history: only PENDING -> COMPLETED is allowed.

Failure modes:
    - IntegrityError on constraint violations.
    - StaleDataError on a concurrent update of the same instance.
    - ImmutabilityViolationError on a forbidden UPDATE or any DELETE.

Audit relevance:
    The action table is the audit trail of every accepted submission,
    ordered by (created_at, sequence).
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
from workflow_kernel.domain.input_validation import ENTITY_ID_MAX_LENGTH, ENTITY_TYPE_MAX_LENGTH
from workflow_kernel.exceptions import ImmutabilityViolationError
from workflow_kernel.logging_config import get_logger

logger = get_logger("models.instance")


class WorkflowInstanceModel(Base):
    """Persistent workflow instance.

    Contract:
        Status moves ACTIVE -> COMPLETED or ACTIVE -> REJECTED exactly once.
        completed_at is set together with the terminal status.
    """

    __tablename__ = "workflow_instances"

    __table_args__ = (
        CheckConstraint(
            "status IN ('ACTIVE', 'COMPLETED', 'REJECTED')",
            name="ck_workflow_instances_valid_status",
        ),
        CheckConstraint(
            "(status = 'ACTIVE' AND current_assignee_id IS NOT NULL AND completed_at IS NULL)"
            " OR (status <> 'ACTIVE' AND completed_at IS NOT NULL)",
            name="ck_workflow_instances_assignee_completion",
        ),
        ForeignKeyConstraint(
            ["current_step_id", "template_id"],
            ["workflow_steps.id", "workflow_steps.template_id"],
            name="fk_workflow_instances_step_same_template",
        ),
        Index(
            "ix_workflow_instances_assignee_status",
            "current_assignee_id", "status", "created_at",
        ),
        Index("ix_workflow_instances_entity", "entity_type", "entity_id"),
    )

    template_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_templates.id"), nullable=False,
    )
    current_step_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    current_assignee_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=True,
    )
    entity_type: Mapped[str] = mapped_column(String(ENTITY_TYPE_MAX_LENGTH), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(ENTITY_ID_MAX_LENGTH), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="ACTIVE")
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<WorkflowInstance {self.id} {self.entity_type}/{self.entity_id} "
            f"status={self.status} step={self.current_step_id}>"
        )

    def to_dto(self):
        from workflow_kernel.domain.workflow import InstanceRecord, InstanceStatus

        return InstanceRecord(
            id=self.id,
            template_id=self.template_id,
            current_step_id=self.current_step_id,
            current_assignee_id=self.current_assignee_id,
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            status=InstanceStatus(self.status),
            created_at=self.created_at,
            completed_at=self.completed_at,
            version=self.version,
        )


class WorkflowStepAssignmentModel(Base):
    """One visit of one step by one assignee."""

    __tablename__ = "workflow_step_assignments"

    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING', 'COMPLETED')",
            name="ck_workflow_assignments_valid_status",
        ),
        UniqueConstraint("instance_id", "visit", name="uq_workflow_assignments_instance_visit"),
        Index("ix_workflow_assignments_assignee_status", "assignee_id", "status"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_steps.id"), nullable=False,
    )
    assignee_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="PENDING")
    # 1-based visit counter within the instance
    visit: Mapped[int] = mapped_column(nullable=False)
    assigned_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WorkflowStepAssignment instance={self.instance_id} "
            f"#{self.visit} step={self.step_id} status={self.status}>"
        )

    def to_dto(self):
        from workflow_kernel.domain.workflow import AssignmentRecord, AssignmentStatus

        return AssignmentRecord(
            id=self.id,
            instance_id=self.instance_id,
            step_id=self.step_id,
            assignee_id=self.assignee_id,
            status=AssignmentStatus(self.status),
            visit=self.visit,
            assigned_at=self.assigned_at,
            completed_at=self.completed_at,
        )


class WorkflowActionModel(Base):
    """Persistent action record. Append-only."""

    __tablename__ = "workflow_actions"

    __table_args__ = (
        UniqueConstraint("instance_id", "sequence", name="uq_workflow_actions_instance_seq"),
        CheckConstraint(
            "action_type IN ('APPROVE', 'REJECT', 'MODIFY')",
            name="ck_workflow_actions_valid_type",
        ),
        CheckConstraint("sequence >= 1", name="ck_workflow_actions_sequence_positive"),
        Index("ix_workflow_actions_instance_time", "instance_id", "created_at", "sequence"),
    )

    instance_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_instances.id"), nullable=False,
    )
    step_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("workflow_steps.id"), nullable=False,
    )
    actor_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("users.id"), nullable=False,
    )
    action_type: Mapped[str] = mapped_column(String(20), nullable=False)
    comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    data_modifications: Mapped[dict[str, Any] | None] = mapped_column(JSONPayload, nullable=True)
    context: Mapped[dict[str, Any] | None] = mapped_column(JSONPayload, nullable=True)
    sequence: Mapped[int] = mapped_column(nullable=False)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<WorkflowAction {self.id} instance={self.instance_id} "
            f"#{self.sequence} {self.action_type}>"
        )

    def to_dto(self):
        from workflow_kernel.domain.workflow import ActionRecord, ActionType

        return ActionRecord(
            id=self.id,
            instance_id=self.instance_id,
            step_id=self.step_id,
            actor_id=self.actor_id,
            action_type=ActionType(self.action_type),
            sequence=self.sequence,
            created_at=self.created_at,
            comments=self.comments,
            data_modifications=self.data_modifications,
            context=self.context,
        )


# =============================================================================
# ORM-Level Immutability
# =============================================================================


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


_INSTANCE_MUTABLE_FIELDS = frozenset({
    "current_step_id",
    "current_assignee_id",
    "status",
    "completed_at",
    "version",
})


@event.listens_for(WorkflowInstanceModel, "before_update")
def prevent_closed_instance_update(mapper, connection, target):
    """Terminal instances are frozen; identity fields never change."""
    state = inspect(target)
    status_history = state.attrs.status.history
    previous_status = status_history.deleted[0] if status_history.deleted else target.status
    if previous_status != "ACTIVE":
        _block(
            "WorkflowInstance", target, "UPDATE",
            f"Instance is closed ({previous_status}) -- cannot modify",
        )
    for attr in state.attrs:
        if attr.key not in _INSTANCE_MUTABLE_FIELDS and attr.history.has_changes():
            _block(
                "WorkflowInstance", target, "UPDATE",
                f"Cannot modify field '{attr.key}' on a workflow instance", attr.key,
            )


@event.listens_for(WorkflowStepAssignmentModel, "before_update")
def prevent_assignment_rewrite(mapper, connection, target):
    """Only closing a PENDING assignment is allowed."""
    state = inspect(target)
    status_history = state.attrs.status.history
    previous_status = status_history.deleted[0] if status_history.deleted else target.status
    if previous_status != "PENDING":
        _block(
            "WorkflowStepAssignment", target, "UPDATE",
            "Completed assignments are history -- cannot modify",
        )
    for attr in state.attrs:
        if attr.key not in ("status", "completed_at") and attr.history.has_changes():
            _block(
                "WorkflowStepAssignment", target, "UPDATE",
                f"Cannot modify field '{attr.key}' on an assignment", attr.key,
            )


@event.listens_for(WorkflowActionModel, "before_update")
def prevent_action_update(mapper, connection, target):
    _block(
        "WorkflowAction", target, "UPDATE",
        "Workflow actions are immutable -- cannot modify",
    )


@event.listens_for(WorkflowInstanceModel, "before_delete")
def prevent_instance_delete(mapper, connection, target):
    _block("WorkflowInstance", target, "DELETE", "Workflow instances cannot be deleted")


@event.listens_for(WorkflowStepAssignmentModel, "before_delete")
def prevent_assignment_delete(mapper, connection, target):
    _block(
        "WorkflowStepAssignment", target, "DELETE",
        "Workflow assignments cannot be deleted",
    )


@event.listens_for(WorkflowActionModel, "before_delete")
def prevent_action_delete(mapper, connection, target):
    _block("WorkflowAction", target, "DELETE", "Workflow actions cannot be deleted")
