"""
Module: workflow_kernel.selectors.workflow_selector
Responsibility: Read projections over templates, instances, assignments,
    actions and the user directory.

Architecture position: Kernel > Selectors.  Read-only.

Each method is one explicit lookup against one ownership boundary
(template, step, transition, instance, user).  Callers compose them; there
is no single query that loads a whole template graph with its instances.
Orderings are stable:
    - steps by step order,
    - transitions by sequence,
    - instances by (created_at, id),
    - assignments by visit number,
    - actions by (created_at, sequence).
"""

from __future__ import annotations

from typing import Iterable
from uuid import UUID

from sqlalchemy import select

from workflow_kernel.domain.workflow import (
    ActionRecord,
    AssignedWorkflow,
    AssignmentRecord,
    InstanceRecord,
    InstanceStatus,
    StepRecord,
    TemplateRecord,
    TemplateSummary,
    TransitionRecord,
    UserRef,
)
from workflow_kernel.models.directory import RoleModel, UserModel
from workflow_kernel.models.instance import (
    WorkflowActionModel,
    WorkflowInstanceModel,
    WorkflowStepAssignmentModel,
)
from workflow_kernel.models.template import (
    WorkflowStepModel,
    WorkflowStepTransitionModel,
    WorkflowTemplateModel,
)
from workflow_kernel.selectors.base import BaseSelector


class WorkflowSelector(BaseSelector):
    """Read-only queries for the workflow engine."""

    # -- templates ----------------------------------------------------------

    def get_template_summary(self, template_id: UUID) -> TemplateSummary | None:
        model = self.session.get(WorkflowTemplateModel, template_id)
        return model.to_summary() if model is not None else None

    def get_template(self, template_id: UUID) -> TemplateRecord | None:
        """Template header with steps (by order) and transitions (by sequence)."""
        model = self.session.get(WorkflowTemplateModel, template_id)
        if model is None:
            return None
        return TemplateRecord(
            id=model.id,
            name=model.name,
            description=model.description,
            is_active=model.is_active,
            created_at=model.created_at,
            steps=self.get_template_steps(template_id),
            transitions=self.get_template_transitions(template_id),
        )

    def get_template_steps(self, template_id: UUID) -> tuple[StepRecord, ...]:
        rows = self.session.execute(
            select(WorkflowStepModel)
            .where(WorkflowStepModel.template_id == template_id)
            .order_by(WorkflowStepModel.step_order)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    def get_template_transitions(self, template_id: UUID) -> tuple[TransitionRecord, ...]:
        rows = self.session.execute(
            select(WorkflowStepTransitionModel)
            .where(WorkflowStepTransitionModel.template_id == template_id)
            .order_by(WorkflowStepTransitionModel.sequence)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    # -- steps and transitions ---------------------------------------------

    def get_step(self, step_id: UUID) -> StepRecord | None:
        model = self.session.get(WorkflowStepModel, step_id)
        return model.to_dto() if model is not None else None

    def get_entry_step(self, template_id: UUID) -> StepRecord | None:
        """The step with order 1, if the template has one."""
        model = self.session.execute(
            select(WorkflowStepModel).where(
                WorkflowStepModel.template_id == template_id,
                WorkflowStepModel.step_order == 1,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def get_outgoing_transitions(self, step_id: UUID) -> tuple[TransitionRecord, ...]:
        rows = self.session.execute(
            select(WorkflowStepTransitionModel)
            .where(WorkflowStepTransitionModel.from_step_id == step_id)
            .order_by(WorkflowStepTransitionModel.sequence)
        ).scalars().all()
        return tuple(row.to_dto() for row in rows)

    # -- instances ----------------------------------------------------------

    def get_instance(self, instance_id: UUID) -> InstanceRecord | None:
        model = self.session.get(WorkflowInstanceModel, instance_id)
        return model.to_dto() if model is not None else None

    def get_assigned_workflows(
        self,
        user_id: UUID,
        status: InstanceStatus | None = None,
    ) -> list[AssignedWorkflow]:
        """Instances whose current assignee is ``user_id``, oldest first.

        Terminal instances carry no assignee, so filtering on a terminal
        status returns an empty list.
        """
        stmt = select(WorkflowInstanceModel).where(
            WorkflowInstanceModel.current_assignee_id == user_id
        )
        if status is not None:
            stmt = stmt.where(WorkflowInstanceModel.status == InstanceStatus(status).value)
        stmt = stmt.order_by(WorkflowInstanceModel.created_at, WorkflowInstanceModel.id)
        instances = [row.to_dto() for row in self.session.execute(stmt).scalars().all()]
        if not instances:
            return []

        templates = self._templates_by_id(i.template_id for i in instances)
        steps = self._steps_by_id(i.current_step_id for i in instances)
        users = self.get_users(
            i.current_assignee_id for i in instances if i.current_assignee_id is not None
        )

        return [
            AssignedWorkflow(
                instance=inst,
                template=templates[inst.template_id],
                current_step=steps[inst.current_step_id],
                current_assignee=(
                    users.get(inst.current_assignee_id)
                    if inst.current_assignee_id is not None
                    else None
                ),
            )
            for inst in instances
        ]

    def list_instances_for_entity(self, entity_type: str, entity_id: str) -> list[InstanceRecord]:
        rows = self.session.execute(
            select(WorkflowInstanceModel)
            .where(
                WorkflowInstanceModel.entity_type == entity_type,
                WorkflowInstanceModel.entity_id == str(entity_id),
            )
            .order_by(WorkflowInstanceModel.created_at, WorkflowInstanceModel.id)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # -- history ------------------------------------------------------------

    def list_assignments(self, instance_id: UUID) -> list[AssignmentRecord]:
        rows = self.session.execute(
            select(WorkflowStepAssignmentModel)
            .where(WorkflowStepAssignmentModel.instance_id == instance_id)
            .order_by(WorkflowStepAssignmentModel.visit)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    def list_actions(self, instance_id: UUID) -> list[ActionRecord]:
        rows = self.session.execute(
            select(WorkflowActionModel)
            .where(WorkflowActionModel.instance_id == instance_id)
            .order_by(WorkflowActionModel.created_at, WorkflowActionModel.sequence)
        ).scalars().all()
        return [row.to_dto() for row in rows]

    # -- directory ----------------------------------------------------------

    def get_user(self, user_id: UUID) -> UserRef | None:
        model = self.session.get(UserModel, user_id)
        return model.to_ref() if model is not None else None

    def get_users(self, user_ids: Iterable[UUID]) -> dict[UUID, UserRef]:
        ids = set(user_ids)
        if not ids:
            return {}
        rows = self.session.execute(
            select(UserModel).where(UserModel.id.in_(ids))
        ).scalars().all()
        return {row.id: row.to_ref() for row in rows}

    def existing_role_ids(self, role_ids: Iterable[UUID]) -> set[UUID]:
        ids = {rid for rid in role_ids if isinstance(rid, UUID)}
        if not ids:
            return set()
        return set(
            self.session.execute(
                select(RoleModel.id).where(RoleModel.id.in_(ids))
            ).scalars().all()
        )

    # -- helpers ------------------------------------------------------------

    def _templates_by_id(self, template_ids: Iterable[UUID]) -> dict[UUID, TemplateSummary]:
        rows = self.session.execute(
            select(WorkflowTemplateModel).where(WorkflowTemplateModel.id.in_(set(template_ids)))
        ).scalars().all()
        return {row.id: row.to_summary() for row in rows}

    def _steps_by_id(self, step_ids: Iterable[UUID]) -> dict[UUID, StepRecord]:
        rows = self.session.execute(
            select(WorkflowStepModel).where(WorkflowStepModel.id.in_(set(step_ids)))
        ).scalars().all()
        return {row.id: row.to_dto() for row in rows}
