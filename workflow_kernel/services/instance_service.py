"""
workflow_kernel.services.instance_service -- Instance Lifecycle Manager.

Responsibility:
    Starts workflow instances from templates and applies assignee actions:
    authorizes the actor, asks the transition engine for the next step,
    resolves the next assignee, records the action, and moves the instance.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/
    and the pure engines.  Composes AssignmentResolver and ActionRecorder.

Invariants enforced:
    - An instance starts ACTIVE at its template's order-1 step with a
      resolved assignee and one PENDING assignment, or not at all.
    - Only the current assignee may act; a closed instance accepts nothing.
    - Every accepted action produces exactly one action row; a refused one
      produces none (all writes share the caller's transaction).
    - The instance row is locked (SELECT ... FOR UPDATE) for the duration of
      an action, and its version column detects any stale writer.
    - Terminal states are final: completed_at is set once, the assignee is
      cleared, and the open assignment is closed.

Failure modes:
    - TemplateNotFoundError / TemplateInactiveError / EntryStepNotFoundError
      on start.
    - ValidationError for a malformed entity reference, action type or
      action payload, raised before anything is read or locked.
    - InstanceNotFoundError, InstanceClosedError, UnauthorizedActionError,
      ForbiddenActionError, NoEligibleAssigneeError on apply.
    - StaleDataError from the flush when a competing writer won; the
      boundary maps it to ConcurrencyConflictError.

Audit relevance:
    Each state change emits a structured ``workflow_*`` record to the log and
    to the optional outcome sink.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Mapping
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from workflow_engines.transition import compute_next
from workflow_kernel.domain.clock import Clock, SystemClock
from workflow_kernel.domain.conditions import build_evaluation_context
from workflow_kernel.domain.input_validation import (
    validate_action_input,
    validate_entity_ref,
)
from workflow_kernel.domain.workflow import (
    ActionOutcome,
    ActionRecord,
    ActionType,
    Advance,
    InstanceRecord,
    InstanceStatus,
    NextStepDecision,
    RejectTo,
    Stay,
    Terminal,
    UserRef,
    can_transition,
)
from workflow_kernel.exceptions import (
    EntryStepNotFoundError,
    InstanceClosedError,
    InstanceNotFoundError,
    StepNotFoundError,
    TemplateInactiveError,
    TemplateNotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.instance import WorkflowInstanceModel
from workflow_kernel.models.template import WorkflowTemplateModel
from workflow_kernel.selectors.workflow_selector import WorkflowSelector
from workflow_kernel.services.action_recorder import ActionRecorder
from workflow_kernel.services.assignment_resolver import AssignmentResolver

logger = get_logger("services.instance_service")

OutcomeSink = Callable[[dict[str, Any]], None]

EVENT_STARTED = "workflow_started"
EVENT_ADVANCED = "workflow_advanced"
EVENT_REJECTED_TO = "workflow_rejected_to"
EVENT_COMPLETED = "workflow_completed"
EVENT_REJECTED = "workflow_rejected"
EVENT_MODIFIED = "workflow_modified"


class InstanceService:
    """Starts instances and applies actions to them."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        resolver: AssignmentResolver | None = None,
        recorder: ActionRecorder | None = None,
        outcome_sink: OutcomeSink | None = None,
    ) -> None:
        self._session = session
        self._clock = clock or SystemClock()
        self._resolver = resolver or AssignmentResolver(session, self._clock)
        self._recorder = recorder or ActionRecorder(session, self._clock)
        self._selector = WorkflowSelector(session)
        self._outcome_sink = outcome_sink

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def start_instance(
        self,
        template_id: UUID,
        entity_type: str,
        entity_id: str | int,
    ) -> InstanceRecord:
        """Instantiate a template for an entity.

        Raises:
            ValidationError: entity type or id empty or too long.
            TemplateNotFoundError: unknown template.
            TemplateInactiveError: template was deactivated.
            EntryStepNotFoundError: template has no step with order 1.
            NoEligibleAssigneeError: nobody holds the entry step's role.
        """
        errors = validate_entity_ref(entity_type, entity_id)
        if errors:
            raise ValidationError("start_workflow", errors)

        with LogContext.bind(template_id=template_id):
            template = self._session.get(WorkflowTemplateModel, template_id)
            if template is None:
                raise TemplateNotFoundError(str(template_id))
            if not template.is_active:
                raise TemplateInactiveError(str(template_id))

            entry = self._selector.get_entry_step(template_id)
            if entry is None:
                raise EntryStepNotFoundError(str(template_id))

            assignee = self._resolver.resolve_assignee(entry.role_id, entry.id)

            instance = WorkflowInstanceModel(
                id=uuid4(),
                template_id=template_id,
                current_step_id=entry.id,
                current_assignee_id=assignee.id,
                entity_type=entity_type,
                entity_id=str(entity_id),
                status=InstanceStatus.ACTIVE.value,
                created_at=self._clock.now(),
                completed_at=None,
            )
            self._session.add(instance)
            self._session.flush()

            self._resolver.open_assignment(instance.id, entry.id, assignee.id)

            record = instance.to_dto()
            self._emit(
                EVENT_STARTED,
                record,
                to_step_id=entry.id,
                assignee=assignee,
            )
            return record

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def apply_action(
        self,
        instance_id: UUID,
        actor_id: UUID,
        action_type: ActionType | str,
        comments: str | None = None,
        data_modifications: Mapping[str, Any] | None = None,
        context: Mapping[str, Any] | None = None,
    ) -> ActionOutcome:
        """Apply one assignee action to an instance.

        Order: input check, lock, closed check, authorization, decision,
        next assignee, record, state change.  Any failure leaves the caller's
        transaction to be rolled back with nothing recorded.
        """
        action, errors = validate_action_input(action_type, data_modifications, context)
        if errors:
            raise ValidationError("take_action", errors)

        with LogContext.bind(instance_id=instance_id, actor_id=actor_id):
            instance = self._load_instance_for_update(instance_id)

            if instance.status != InstanceStatus.ACTIVE.value:
                logger.info(
                    "action_on_closed_instance_rejected",
                    extra={"instance_id": str(instance_id), "status": instance.status},
                )
                raise InstanceClosedError(str(instance_id), instance.status)

            if instance.current_assignee_id != actor_id:
                logger.warning(
                    "unauthorized_action_rejected",
                    extra={
                        "instance_id": str(instance_id),
                        "actor_id": str(actor_id),
                        "current_assignee_id": str(instance.current_assignee_id),
                    },
                )
                raise UnauthorizedActionError(
                    instance_id=str(instance_id),
                    actor_id=str(actor_id),
                    current_assignee_id=str(instance.current_assignee_id),
                )

            step = self._selector.get_step(instance.current_step_id)
            if step is None:
                raise StepNotFoundError(str(instance.current_step_id))

            eval_context = build_evaluation_context(
                instance.entity_type,
                instance.entity_id,
                data_modifications,
                context,
            )
            decision = compute_next(
                step=step,
                transitions=self._selector.get_outgoing_transitions(step.id),
                action_type=action,
                context=eval_context,
            )

            next_assignee: UserRef | None = None
            if isinstance(decision, (Advance, RejectTo)):
                target = self._selector.get_step(decision.step_id)
                if target is None:
                    raise StepNotFoundError(str(decision.step_id))
                next_assignee = self._resolver.resolve_assignee(target.role_id, target.id)

            action_record = self._recorder.record_action(
                instance_id=instance.id,
                step_id=step.id,
                actor_id=actor_id,
                action_type=action,
                comments=comments,
                data_modifications=data_modifications,
                context=context,
            )

            previous_step_id = instance.current_step_id
            self._apply_decision(instance, decision, next_assignee)

            record = instance.to_dto()
            self._emit_for_decision(
                record, decision, action_record, previous_step_id, next_assignee
            )
            return ActionOutcome(
                instance=record,
                action=action_record,
                decision=decision,
                previous_step_id=previous_step_id,
            )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _load_instance_for_update(self, instance_id: UUID) -> WorkflowInstanceModel:
        """Load and lock the instance row, refreshing any cached state."""
        model = self._session.execute(
            select(WorkflowInstanceModel)
            .where(WorkflowInstanceModel.id == instance_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise InstanceNotFoundError(str(instance_id))
        return model

    def _apply_decision(
        self,
        instance: WorkflowInstanceModel,
        decision: NextStepDecision,
        next_assignee: UserRef | None,
    ) -> None:
        if isinstance(decision, Stay):
            return

        current = InstanceStatus(instance.status)
        self._resolver.complete_pending(instance.id)

        if isinstance(decision, Terminal):
            if not can_transition(current, decision.outcome):
                raise InstanceClosedError(str(instance.id), instance.status)
            instance.status = decision.outcome.value
            instance.current_assignee_id = None
            instance.completed_at = self._clock.now()
            self._session.flush()
            return

        instance.current_step_id = decision.step_id
        instance.current_assignee_id = next_assignee.id
        self._session.flush()
        self._resolver.open_assignment(instance.id, decision.step_id, next_assignee.id)

    def _emit_for_decision(
        self,
        record: InstanceRecord,
        decision: NextStepDecision,
        action: ActionRecord,
        previous_step_id: UUID,
        next_assignee: UserRef | None,
    ) -> None:
        if isinstance(decision, Advance):
            event = EVENT_ADVANCED
        elif isinstance(decision, RejectTo):
            event = EVENT_REJECTED_TO
        elif isinstance(decision, Stay):
            event = EVENT_MODIFIED
        elif decision.outcome is InstanceStatus.COMPLETED:
            event = EVENT_COMPLETED
        else:
            event = EVENT_REJECTED

        self._emit(
            event,
            record,
            from_step_id=previous_step_id,
            to_step_id=record.current_step_id,
            assignee=next_assignee,
            action=action,
        )

    def _emit(
        self,
        event: str,
        instance: InstanceRecord,
        *,
        to_step_id: UUID,
        assignee: UserRef | None,
        from_step_id: UUID | None = None,
        action: ActionRecord | None = None,
    ) -> None:
        """Emit a structured workflow outcome record to the log and the sink."""
        record: dict[str, Any] = {
            "event": event,
            "instance_id": str(instance.id),
            "template_id": str(instance.template_id),
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "status": instance.status.value,
            "from_step_id": str(from_step_id) if from_step_id else None,
            "to_step_id": str(to_step_id),
            "assignee_id": str(assignee.id) if assignee else None,
            "assignee_name": assignee.name if assignee else None,
        }
        if action is not None:
            record["action_id"] = str(action.id)
            record["action_type"] = action.action_type.value
            record["actor_id"] = str(action.actor_id)
            record["occurred_at"] = action.created_at.isoformat()
        else:
            record["occurred_at"] = instance.created_at.isoformat()

        logger.info(event, extra=record)
        if self._outcome_sink is not None:
            self._outcome_sink(dict(record))
