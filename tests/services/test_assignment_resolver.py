"""
Tests for AssignmentResolver -- deterministic assignee selection.

Covers:
- resolve_assignee(): single holder, primary-first tie-break, lowest-id
  tie-break, inactive users skipped, no holder
- open_assignment() / complete_pending(): visit numbering, closing
- unknown tie-break policy
"""

from uuid import UUID, uuid4

import pytest

from workflow_kernel.domain.workflow import AssignmentStatus
from workflow_kernel.exceptions import NoEligibleAssigneeError
from workflow_kernel.services.assignment_resolver import (
    LOWEST_ID,
    AssignmentResolver,
)

LOW_ID = UUID("00000000-0000-4000-8000-000000000001")
HIGH_ID = UUID("ffffffff-ffff-4fff-bfff-ffffffffffff")


class TestResolveAssignee:
    def test_single_holder(self, assignment_resolver, create_role, create_user):
        role = create_role()
        user = create_user("only", role)
        assert assignment_resolver.resolve_assignee(role.id).id == user.id

    def test_lowest_id_among_non_primary(self, assignment_resolver, create_role, create_user):
        role = create_role()
        create_user("high", role, user_id=HIGH_ID)
        create_user("low", role, user_id=LOW_ID)
        assert assignment_resolver.resolve_assignee(role.id).id == LOW_ID

    def test_primary_holder_wins(self, assignment_resolver, create_role, create_user):
        role = create_role()
        create_user("low", role, user_id=LOW_ID)
        create_user("primary", role, primary=True, user_id=HIGH_ID)
        chosen = assignment_resolver.resolve_assignee(role.id)
        assert chosen.id == HIGH_ID
        assert chosen.name == "primary"

    def test_lowest_id_policy_ignores_primary(
        self, session, deterministic_clock, create_role, create_user,
    ):
        role = create_role()
        create_user("low", role, user_id=LOW_ID)
        create_user("primary", role, primary=True, user_id=HIGH_ID)
        resolver = AssignmentResolver(session, deterministic_clock, tie_break=LOWEST_ID)
        assert resolver.resolve_assignee(role.id).id == LOW_ID

    def test_inactive_users_skipped(self, assignment_resolver, create_role, create_user):
        role = create_role()
        create_user("gone", role, user_id=LOW_ID, is_active=False)
        create_user("here", role, user_id=HIGH_ID)
        assert assignment_resolver.resolve_assignee(role.id).id == HIGH_ID

    def test_no_holder(self, assignment_resolver, create_role, create_user, captured_logs):
        role = create_role()
        create_user("unrelated")
        with pytest.raises(NoEligibleAssigneeError) as exc_info:
            assignment_resolver.resolve_assignee(role.id)
        assert exc_info.value.role_id == str(role.id)
        assert any(r["message"] == "no_eligible_assignee" for r in captured_logs())

    def test_only_inactive_holders(self, assignment_resolver, create_role, create_user):
        role = create_role()
        create_user("gone", role, is_active=False)
        with pytest.raises(NoEligibleAssigneeError):
            assignment_resolver.resolve_assignee(role.id)

    def test_resolution_is_stable(self, assignment_resolver, create_role, create_user):
        role = create_role()
        for i in range(5):
            create_user(f"u{i}", role)
        picks = {assignment_resolver.resolve_assignee(role.id).id for _ in range(3)}
        assert len(picks) == 1

    def test_eligible_assignees_order(self, assignment_resolver, create_role, create_user):
        role = create_role()
        create_user("high", role, user_id=HIGH_ID)
        create_user("low", role, user_id=LOW_ID)
        assert [u.id for u in assignment_resolver.eligible_assignees(role.id)] == [LOW_ID, HIGH_ID]


class TestTieBreakPolicy:
    def test_unknown_policy(self, session):
        with pytest.raises(ValueError):
            AssignmentResolver(session, tie_break="round_robin")


class TestAssignments:
    def test_open_and_complete(
        self, assignment_resolver, instance_service, invoice_template, invoice_directory,
    ):
        instance = instance_service.start_instance(invoice_template.id, "invoice", 1)
        pending = assignment_resolver.get_pending_assignment(instance.id)
        assert pending.visit == 1
        assert pending.status is AssignmentStatus.PENDING
        assert pending.assignee_id == invoice_directory["users"]["alice"].id

        closed = assignment_resolver.complete_pending(instance.id)
        assert [a.status for a in closed] == [AssignmentStatus.COMPLETED]
        assert closed[0].completed_at is not None
        assert assignment_resolver.get_pending_assignment(instance.id) is None

        reopened = assignment_resolver.open_assignment(
            instance.id, pending.step_id, pending.assignee_id,
        )
        assert reopened.visit == 2

    def test_complete_pending_without_pending_rows(self, assignment_resolver):
        assert assignment_resolver.complete_pending(uuid4()) == []
