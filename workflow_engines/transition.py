"""
workflow_engines.transition -- Pure next-step evaluation.

Responsibility:
    Given the current step, its outgoing transitions, an action type and the
    evaluation context, decide what happens to the instance: advance along a
    transition, route back to the rejection target, stay put, or terminate.

Architecture position:
    Engines -- pure evaluation layer, zero I/O.
    May only import workflow_kernel/domain/ types and kernel exceptions.

Invariants enforced:
    - Deterministic ordering: transitions are tried in ascending ``sequence``;
      the first satisfied one wins.  An unconditioned edge is always
      satisfied, so it shadows every edge after it.
    - APPROVE with nothing satisfied completes the instance.
    - REJECT goes to the rejection target when the step has one, otherwise
      rejects the instance.
    - MODIFY never changes the step and is only allowed where can_modify.
    - Purity: no clock access, no I/O, no database.

Failure modes:
    - ForbiddenActionError for MODIFY on a step without can_modify.
    - ValueError for an action type outside the ActionType vocabulary.
"""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.conditions import Condition
from workflow_kernel.domain.workflow import (
    ActionType,
    Advance,
    InstanceStatus,
    NextStepDecision,
    RejectTo,
    Stay,
    StepRecord,
    Terminal,
    TransitionRecord,
)
from workflow_kernel.exceptions import ForbiddenActionError


def evaluate_condition(condition: Condition | None, context: Mapping[str, Any]) -> bool:
    """An absent condition is always satisfied."""
    if condition is None:
        return True
    return condition.evaluate(context)


def select_transition(
    transitions: Sequence[TransitionRecord],
    context: Mapping[str, Any],
) -> TransitionRecord | None:
    """First satisfied transition by ascending sequence, or None."""
    for transition in sorted(transitions, key=lambda t: t.sequence):
        if evaluate_condition(transition.condition, context):
            return transition
    return None


@traced_engine("transition", "1.0", fingerprint_fields=("action_type", "context"))
def compute_next(
    *,
    step: StepRecord,
    transitions: Sequence[TransitionRecord],
    action_type: ActionType | str,
    context: Mapping[str, Any] | None = None,
) -> NextStepDecision:
    """Decide the next step for an action taken at ``step``.

    Args:
        step: The instance's current step.
        transitions: Candidate edges; only those leaving ``step`` are used.
        action_type: APPROVE, REJECT or MODIFY.
        context: Evaluation context (see ``build_evaluation_context``).

    Returns:
        Advance, RejectTo, Terminal or Stay.
    """
    action = ActionType(action_type)

    if action is ActionType.REJECT:
        if step.rejection_step_id is not None:
            return RejectTo(step_id=step.rejection_step_id)
        return Terminal(outcome=InstanceStatus.REJECTED)

    if action is ActionType.MODIFY:
        if not step.can_modify:
            raise ForbiddenActionError(
                step_id=str(step.id),
                action_type=action.value,
                reason="step does not allow modification",
            )
        return Stay()

    outgoing = [t for t in transitions if t.from_step_id == step.id]
    chosen = select_transition(outgoing, context or {})
    if chosen is None:
        return Terminal(outcome=InstanceStatus.COMPLETED)
    return Advance(step_id=chosen.to_step_id, transition_id=chosen.id)
