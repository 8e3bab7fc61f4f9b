"""
workflow_kernel.services.assignment_resolver -- Assignee resolution and
per-visit assignment records.

Responsibility:
    Picks the user who should act on a step, deterministically, from the
    holders of the step's role, and maintains the assignment history
    (one PENDING row per visit, closed when the instance leaves the step).

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.

Invariants enforced:
    - Only active users holding the role are eligible.
    - Tie-break is deterministic for a given membership snapshot:
        * ``primary_then_lowest_id`` (default): primary holders first, then
          ascending user id;
        * ``lowest_id``: ascending user id only.
    - At most one PENDING assignment per instance at any time.

Failure modes:
    - NoEligibleAssigneeError when the role has no active holder.
    - ValueError for an unknown tie-break policy.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock
from workflow_kernel.domain.workflow import AssignmentRecord, AssignmentStatus, UserRef
from workflow_kernel.exceptions import NoEligibleAssigneeError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.directory import UserModel, UserRoleModel
from workflow_kernel.models.instance import WorkflowStepAssignmentModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.assignment_resolver")

PRIMARY_THEN_LOWEST_ID = "primary_then_lowest_id"
LOWEST_ID = "lowest_id"
TIE_BREAK_POLICIES = frozenset({PRIMARY_THEN_LOWEST_ID, LOWEST_ID})


class AssignmentResolver(BaseService):
    """Resolves assignees for steps and records step assignments."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        tie_break: str = PRIMARY_THEN_LOWEST_ID,
    ):
        super().__init__(session, clock)
        if tie_break not in TIE_BREAK_POLICIES:
            raise ValueError(
                f"Unknown tie-break policy {tie_break!r}; "
                f"expected one of {sorted(TIE_BREAK_POLICIES)}"
            )
        self.tie_break = tie_break

    def eligible_assignees(self, role_id: UUID) -> list[UserRef]:
        """Active holders of ``role_id`` in resolution order."""
        rows = self.session.execute(
            select(UserModel, UserRoleModel.is_primary)
            .join(UserRoleModel, UserRoleModel.user_id == UserModel.id)
            .where(
                UserRoleModel.role_id == role_id,
                UserModel.is_active.is_(True),
            )
        ).all()

        if self.tie_break == PRIMARY_THEN_LOWEST_ID:
            ordered = sorted(rows, key=lambda r: (not r[1], str(r[0].id)))
        else:
            ordered = sorted(rows, key=lambda r: str(r[0].id))
        return [user.to_ref() for user, _ in ordered]

    def resolve_assignee(self, role_id: UUID, step_id: UUID | None = None) -> UserRef:
        """Pick the single assignee for a step requiring ``role_id``.

        Raises:
            NoEligibleAssigneeError: nobody active holds the role.
        """
        candidates = self.eligible_assignees(role_id)
        if not candidates:
            logger.warning(
                "no_eligible_assignee",
                extra={
                    "role_id": str(role_id),
                    "step_id": str(step_id) if step_id else None,
                },
            )
            raise NoEligibleAssigneeError(
                role_id=str(role_id),
                step_id=str(step_id) if step_id else None,
            )

        chosen = candidates[0]
        logger.debug(
            "assignee_resolved",
            extra={
                "role_id": str(role_id),
                "step_id": str(step_id) if step_id else None,
                "assignee_id": str(chosen.id),
                "candidate_count": len(candidates),
                "tie_break": self.tie_break,
            },
        )
        return chosen

    def open_assignment(
        self,
        instance_id: UUID,
        step_id: UUID,
        assignee_id: UUID,
    ) -> AssignmentRecord:
        last_visit = self.session.execute(
            select(func.max(WorkflowStepAssignmentModel.visit)).where(
                WorkflowStepAssignmentModel.instance_id == instance_id
            )
        ).scalar_one()
        model = WorkflowStepAssignmentModel(
            id=uuid4(),
            instance_id=instance_id,
            step_id=step_id,
            assignee_id=assignee_id,
            status=AssignmentStatus.PENDING.value,
            visit=(last_visit or 0) + 1,
            assigned_at=self.clock.now(),
            completed_at=None,
        )
        self.session.add(model)
        self.session.flush()
        return model.to_dto()

    def complete_pending(self, instance_id: UUID) -> list[AssignmentRecord]:
        """Close every PENDING assignment of the instance."""
        pending = self.session.execute(
            select(WorkflowStepAssignmentModel).where(
                WorkflowStepAssignmentModel.instance_id == instance_id,
                WorkflowStepAssignmentModel.status == AssignmentStatus.PENDING.value,
            )
        ).scalars().all()

        now = self.clock.now()
        for model in pending:
            model.status = AssignmentStatus.COMPLETED.value
            model.completed_at = now
        if pending:
            self.session.flush()
        return [model.to_dto() for model in pending]

    def get_pending_assignment(self, instance_id: UUID) -> AssignmentRecord | None:
        model = self.session.execute(
            select(WorkflowStepAssignmentModel).where(
                WorkflowStepAssignmentModel.instance_id == instance_id,
                WorkflowStepAssignmentModel.status == AssignmentStatus.PENDING.value,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None
