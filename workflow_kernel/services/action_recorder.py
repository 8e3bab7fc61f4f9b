"""
workflow_kernel.services.action_recorder -- Append-only action history.

Responsibility:
    Writes exactly one audit row per accepted action submission and reads
    the history back in order.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - Append-only: rows are inserted, never updated or deleted (ORM
      listeners on WorkflowActionModel).
    - Per-instance ``sequence`` increments by one for each accepted action;
      UNIQUE(instance_id, sequence) rejects a duplicate writer.
    - Timestamps strictly increase within an instance, so ordering by
      (created_at, sequence) matches the order actions were accepted.

Audit relevance:
    This table is the instance's audit trail: who did what, at which step,
    with which comment, payload and branch context.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select

from workflow_kernel.domain.workflow import ActionRecord, ActionType
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.instance import WorkflowActionModel
from workflow_kernel.selectors.workflow_selector import WorkflowSelector
from workflow_kernel.services.base import BaseService

logger = get_logger("services.action_recorder")

# Smallest step both SQLite and PostgreSQL timestamps keep.
_TIMESTAMP_STEP = timedelta(microseconds=1)


class ActionRecorder(BaseService):
    """Records and lists workflow actions."""

    def record_action(
        self,
        *,
        instance_id: UUID,
        step_id: UUID,
        actor_id: UUID,
        action_type: ActionType | str,
        comments: str | None = None,
        data_modifications: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> ActionRecord:
        last = self.session.execute(
            select(WorkflowActionModel.sequence, WorkflowActionModel.created_at)
            .where(WorkflowActionModel.instance_id == instance_id)
            .order_by(WorkflowActionModel.sequence.desc())
            .limit(1)
        ).first()

        now = self.clock.now()
        sequence = 1
        if last is not None:
            sequence = last.sequence + 1
            if now <= last.created_at:
                now = last.created_at + _TIMESTAMP_STEP

        model = WorkflowActionModel(
            id=uuid4(),
            instance_id=instance_id,
            step_id=step_id,
            actor_id=actor_id,
            action_type=ActionType(action_type).value,
            comments=comments,
            data_modifications=dict(data_modifications) if data_modifications is not None else None,
            context=dict(context) if context else None,
            sequence=sequence,
            created_at=now,
        )
        self.session.add(model)
        self.session.flush()

        logger.info(
            "workflow_action_recorded",
            extra={
                "instance_id": str(instance_id),
                "step_id": str(step_id),
                "actor_id": str(actor_id),
                "action_type": model.action_type,
                "sequence": sequence,
                "has_data_modifications": data_modifications is not None,
            },
        )
        return model.to_dto()

    def list_actions(self, instance_id: UUID) -> list[ActionRecord]:
        """Actions of an instance ordered by (timestamp, sequence)."""
        return WorkflowSelector(self.session).list_actions(instance_id)
