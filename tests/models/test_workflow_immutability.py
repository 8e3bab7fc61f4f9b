"""
Tests for ORM-level immutability of workflow records.

Covers:
- templates: only is_active may change; no deletes
- steps: frozen except the write-once rejection pointer; no deletes
- transitions: no updates, no deletes
- instances: terminal rows frozen; identity fields never change; no deletes
- assignments: only closing a PENDING row; no deletes
- actions: no updates, no deletes
- database constraints: same-template composite keys, status check
"""

from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from workflow_kernel.domain.workflow import ActionType, StepSpec
from workflow_kernel.exceptions import ImmutabilityViolationError
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


@pytest.fixture
def started(instance_service, invoice_template):
    return instance_service.start_instance(invoice_template.id, "invoice", 42)


class TestTemplateImmutability:
    def test_deactivation_allowed(self, session, invoice_template):
        model = session.get(WorkflowTemplateModel, invoice_template.id)
        model.is_active = False
        session.flush()

    def test_rename_blocked(self, session, invoice_template, captured_logs):
        model = session.get(WorkflowTemplateModel, invoice_template.id)
        model.name = "Renamed"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "WorkflowTemplate"
        assert any(r["message"] == "immutability_violation_blocked" for r in captured_logs())

    def test_delete_blocked(self, session, invoice_template):
        session.delete(session.get(WorkflowTemplateModel, invoice_template.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestStepImmutability:
    def test_rename_blocked(self, session, invoice_template):
        step = session.get(WorkflowStepModel, invoice_template.steps[0].id)
        step.name = "Changed"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_rejection_pointer_cannot_be_rewritten(self, session, invoice_template):
        review = invoice_template.step_by_key("review")
        step = session.get(WorkflowStepModel, review.id)
        step.rejection_step_id = invoice_template.step_by_key("finance").id
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, invoice_template):
        session.delete(session.get(WorkflowStepModel, invoice_template.steps[-1].id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestTransitionImmutability:
    def test_update_blocked(self, session, invoice_template):
        edge = session.get(WorkflowStepTransitionModel, invoice_template.transitions[0].id)
        edge.sequence = 99
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, invoice_template):
        session.delete(session.get(WorkflowStepTransitionModel, invoice_template.transitions[0].id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestInstanceImmutability:
    def test_identity_fields_blocked(self, session, started):
        model = session.get(WorkflowInstanceModel, started.id)
        model.entity_id = "43"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert "entity_id" in str(exc_info.value)

    def test_closed_instance_frozen(self, session, instance_service, started, invoice_directory):
        alice = invoice_directory["users"]["alice"]
        bob = invoice_directory["users"]["bob"]
        instance_service.apply_action(started.id, alice.id, ActionType.APPROVE)
        closed = instance_service.apply_action(started.id, bob.id, ActionType.APPROVE).instance
        assert closed.is_terminal

        model = session.get(WorkflowInstanceModel, started.id)
        model.status = "ACTIVE"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, started):
        session.delete(session.get(WorkflowInstanceModel, started.id))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestAssignmentImmutability:
    def test_completed_assignment_frozen(self, session, instance_service, started, invoice_directory):
        alice = invoice_directory["users"]["alice"]
        instance_service.apply_action(started.id, alice.id, ActionType.APPROVE)

        first = session.execute(
            select(WorkflowStepAssignmentModel).where(
                WorkflowStepAssignmentModel.instance_id == started.id,
                WorkflowStepAssignmentModel.visit == 1,
            )
        ).scalar_one()
        assert first.status == "COMPLETED"
        first.status = "PENDING"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_reassignment_blocked(self, session, started, invoice_directory):
        pending = session.execute(
            select(WorkflowStepAssignmentModel).where(
                WorkflowStepAssignmentModel.instance_id == started.id,
            )
        ).scalar_one()
        pending.assignee_id = invoice_directory["users"]["bob"].id
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_delete_blocked(self, session, started):
        pending = session.execute(
            select(WorkflowStepAssignmentModel).where(
                WorkflowStepAssignmentModel.instance_id == started.id,
            )
        ).scalar_one()
        session.delete(pending)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestActionImmutability:
    @pytest.fixture
    def action(self, session, instance_service, started, invoice_directory):
        alice = invoice_directory["users"]["alice"]
        outcome = instance_service.apply_action(
            started.id, alice.id, ActionType.APPROVE, comments="looks fine",
        )
        return session.get(WorkflowActionModel, outcome.action.id)

    def test_comment_edit_blocked(self, session, action):
        action.comments = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "WorkflowAction"

    def test_delete_blocked(self, session, action):
        session.delete(action)
        with pytest.raises(ImmutabilityViolationError):
            session.flush()


class TestDatabaseConstraints:
    def test_rejection_pointer_must_stay_in_template(
        self, session, template_service, invoice_template, invoice_directory,
    ):
        other = template_service.create_template(
            name="Other",
            description=None,
            steps=[StepSpec(name="Only", order=1, role_id=invoice_directory["roles"]["clerk"].id)],
        )
        foreign_step = session.get(WorkflowStepModel, other.steps[0].id)
        foreign_step.rejection_step_id = invoice_template.steps[0].id
        with pytest.raises(IntegrityError):
            session.flush()

    def test_instance_current_step_must_belong_to_template(
        self, session, template_service, invoice_template, invoice_directory, deterministic_clock,
    ):
        other = template_service.create_template(
            name="Other",
            description=None,
            steps=[StepSpec(name="Only", order=1, role_id=invoice_directory["roles"]["clerk"].id)],
        )
        session.add(WorkflowInstanceModel(
            id=uuid4(),
            template_id=invoice_template.id,
            current_step_id=other.steps[0].id,
            current_assignee_id=invoice_directory["users"]["alice"].id,
            entity_type="invoice",
            entity_id="1",
            status="ACTIVE",
            created_at=deterministic_clock.now(),
        ))
        with pytest.raises(IntegrityError):
            session.flush()

    def test_active_instance_requires_assignee(self, session, invoice_template, deterministic_clock):
        session.add(WorkflowInstanceModel(
            id=uuid4(),
            template_id=invoice_template.id,
            current_step_id=invoice_template.steps[0].id,
            current_assignee_id=None,
            entity_type="invoice",
            entity_id="1",
            status="ACTIVE",
            created_at=deterministic_clock.now(),
        ))
        with pytest.raises(IntegrityError):
            session.flush()
