"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (other than the injectable Clock interface)
- I/O

All domain objects are immutable and deterministic.
"""

from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.conditions import (
    Condition,
    ConditionParseError,
    ConditionType,
    EntityTypeIs,
    FieldCompare,
    FieldEquals,
    FieldIn,
    FieldPresent,
    build_evaluation_context,
    parse_condition,
)
from workflow_kernel.domain.workflow import (
    ActionOutcome,
    ActionRecord,
    ActionType,
    Advance,
    AssignedWorkflow,
    AssignmentRecord,
    AssignmentStatus,
    DecisionKind,
    InstanceRecord,
    InstanceStatus,
    NextStepDecision,
    RejectTo,
    StepRecord,
    StepSpec,
    Stay,
    TemplateRecord,
    TemplateSummary,
    Terminal,
    TransitionRecord,
    TransitionSpec,
    UserRef,
)

__all__ = [
    "ActionOutcome",
    "ActionRecord",
    "ActionType",
    "Advance",
    "AssignedWorkflow",
    "AssignmentRecord",
    "AssignmentStatus",
    "Clock",
    "Condition",
    "ConditionParseError",
    "ConditionType",
    "DecisionKind",
    "DeterministicClock",
    "EntityTypeIs",
    "FieldCompare",
    "FieldEquals",
    "FieldIn",
    "FieldPresent",
    "InstanceRecord",
    "InstanceStatus",
    "NextStepDecision",
    "RejectTo",
    "StepRecord",
    "StepSpec",
    "Stay",
    "SystemClock",
    "TemplateRecord",
    "TemplateSummary",
    "Terminal",
    "TransitionRecord",
    "TransitionSpec",
    "UserRef",
    "build_evaluation_context",
    "parse_condition",
]
