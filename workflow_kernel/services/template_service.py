"""
workflow_kernel.services.template_service -- Template Store.

Responsibility:
    Validates and publishes workflow templates (header, steps, transitions)
    as one unit, and handles deactivation.

Architecture position:
    Kernel > Services.  May import from domain/, models/, selectors/, db/.

Invariants enforced:
    - A template is only persisted when its whole definition validates.
    - Rejection targets and transition endpoints resolve inside the same
      submission (and the DB enforces same-template composite keys).
    - Transition ``sequence`` follows submission order, fixing evaluation
      priority.
    - Condition payloads are stored in canonical form for their kind.

Failure modes:
    - ValidationError listing every field problem found.
    - TemplateNotFoundError on deactivate/get of an unknown id.
"""

from __future__ import annotations

from typing import Sequence
from uuid import UUID, uuid4

from workflow_kernel.domain.template_validation import validate_template_definition
from workflow_kernel.domain.workflow import StepSpec, TemplateRecord, TemplateSummary, TransitionSpec
from workflow_kernel.exceptions import TemplateNotFoundError, ValidationError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.template import (
    WorkflowStepModel,
    WorkflowStepTransitionModel,
    WorkflowTemplateModel,
)
from workflow_kernel.selectors.workflow_selector import WorkflowSelector
from workflow_kernel.services.base import BaseService

logger = get_logger("services.template_service")


class TemplateService(BaseService):
    """Creates, reads and deactivates workflow templates."""

    def create_template(
        self,
        name: str,
        description: str | None,
        steps: Sequence[StepSpec],
        transitions: Sequence[TransitionSpec] = (),
    ) -> TemplateRecord:
        """Validate and persist a template definition.

        Steps are inserted first, then rejection pointers are filled in, then
        transitions are inserted in submission order.  Everything happens in
        the caller's transaction, so any failure leaves nothing behind.

        Raises:
            ValidationError: the definition is malformed.
        """
        steps = tuple(steps)
        transitions = tuple(transitions)
        selector = WorkflowSelector(self.session)

        known_roles = selector.existing_role_ids(s.role_id for s in steps)
        result = validate_template_definition(name, steps, transitions, known_roles)
        if not result.is_valid:
            logger.warning(
                "template_validation_failed",
                extra={
                    "template_name": name,
                    "error_count": len(result.field_errors),
                    "error_codes": sorted({e["code"] for e in result.field_errors}),
                },
            )
            raise ValidationError(name, list(result.field_errors))

        for warning in result.warnings:
            logger.warning(
                "template_ambiguous_transitions",
                extra={"template_name": name, **warning},
            )

        now = self.clock.now()
        template = WorkflowTemplateModel(
            id=uuid4(),
            name=name.strip(),
            description=description,
            is_active=True,
            created_at=now,
        )
        self.session.add(template)
        self.session.flush()

        by_key: dict[str, WorkflowStepModel] = {}
        for spec in steps:
            model = WorkflowStepModel(
                id=uuid4(),
                template_id=template.id,
                step_key=spec.correlation_key,
                name=spec.name.strip(),
                step_order=spec.order,
                role_id=spec.role_id,
                is_mandatory=spec.mandatory,
                can_modify=spec.can_modify,
                rejection_step_id=None,
                created_at=now,
            )
            self.session.add(model)
            by_key[spec.correlation_key] = model
        self.session.flush()

        # Rejection pointers may form cycles, so they are set after all
        # steps exist.
        linked = False
        for spec in steps:
            if spec.rejection_step is not None:
                by_key[spec.correlation_key].rejection_step_id = by_key[spec.rejection_step].id
                linked = True
        if linked:
            self.session.flush()

        for sequence, (edge, condition) in enumerate(
            zip(transitions, result.conditions), start=1
        ):
            self.session.add(
                WorkflowStepTransitionModel(
                    id=uuid4(),
                    template_id=template.id,
                    from_step_id=by_key[edge.from_step].id,
                    to_step_id=by_key[edge.to_step].id,
                    sequence=sequence,
                    condition_type=condition.condition_type.value if condition else None,
                    condition_value=condition.to_payload() if condition else None,
                    created_at=now,
                )
            )
        self.session.flush()

        logger.info(
            "workflow_template_created",
            extra={
                "template_id": str(template.id),
                "template_name": template.name,
                "step_count": len(steps),
                "transition_count": len(transitions),
            },
        )

        return selector.get_template(template.id)

    def get_template(self, template_id: UUID) -> TemplateRecord:
        record = WorkflowSelector(self.session).get_template(template_id)
        if record is None:
            raise TemplateNotFoundError(str(template_id))
        return record

    def deactivate_template(self, template_id: UUID) -> TemplateSummary:
        """Stop new instances of a template.  Idempotent.

        Running instances are unaffected.
        """
        template = self.session.get(WorkflowTemplateModel, template_id)
        if template is None:
            raise TemplateNotFoundError(str(template_id))

        if template.is_active:
            template.is_active = False
            self.session.flush()
            logger.info(
                "workflow_template_deactivated",
                extra={"template_id": str(template_id)},
            )
        return template.to_summary()
