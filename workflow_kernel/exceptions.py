"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from WorkflowKernelError:

    WorkflowKernelError (base)
    |
    +-- TemplateError
    |   +-- ValidationError
    |   +-- TemplateInactiveError
    |
    +-- NotFoundError
    |   +-- TemplateNotFoundError
    |   +-- EntryStepNotFoundError
    |   +-- StepNotFoundError
    |   +-- InstanceNotFoundError
    |
    +-- AssignmentError
    |   +-- NoEligibleAssigneeError
    |
    +-- ActionError
    |   +-- UnauthorizedActionError
    |   +-- InstanceClosedError
    |   +-- ForbiddenActionError
    |
    +-- ConcurrencyError
    |   +-- ConcurrencyConflictError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- InternalError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Template        | TEMPLATE_VALIDATION_FAILED  | Malformed template definition
                | TEMPLATE_INACTIVE           | Starting a deactivated template
----------------|-----------------------------|-----------------------------------------
Lookup          | TEMPLATE_NOT_FOUND          | Template ID doesn't exist
                | ENTRY_STEP_NOT_FOUND        | Template has no step with order 1
                | STEP_NOT_FOUND              | Step ID doesn't exist
                | INSTANCE_NOT_FOUND          | Instance ID doesn't exist
----------------|-----------------------------|-----------------------------------------
Assignment      | NO_ELIGIBLE_ASSIGNEE        | No active user holds the step role
----------------|-----------------------------|-----------------------------------------
Action          | UNAUTHORIZED_ACTION         | Actor is not the current assignee
                | INSTANCE_CLOSED             | Instance is COMPLETED or REJECTED
                | FORBIDDEN_ACTION            | MODIFY on a step without can_modify
----------------|-----------------------------|-----------------------------------------
Concurrency     | CONCURRENCY_CONFLICT        | Competing writer on the same instance
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | UPDATE/DELETE on an immutable record
----------------|-----------------------------|-----------------------------------------
Storage         | INTERNAL_ERROR              | Unexpected storage failure

Every exception aborts the enclosing transaction.  Callers catch by type and
read the structured attributes; never parse messages.
"""

from typing import Any


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Template-related exceptions


class TemplateError(WorkflowKernelError):
    """Base exception for template definition errors."""

    code: str = "TEMPLATE_ERROR"


class ValidationError(TemplateError):
    """
    Template definition (or another boundary payload) failed validation.

    Carries every problem found, not just the first one.  Each entry of
    ``field_errors`` is a dict with ``field``, ``code`` and ``message`` keys,
    plus the offending ``value`` where there is one.  ``subject`` names what
    was being validated, usually the template name.
    """

    code: str = "TEMPLATE_VALIDATION_FAILED"

    def __init__(self, subject: str, field_errors: list[dict[str, Any]]):
        self.subject = subject
        self.field_errors = field_errors
        super().__init__(
            f"Validation failed for {subject!r}: {len(field_errors)} error(s)"
        )


class TemplateInactiveError(TemplateError):
    """Template was deactivated and cannot start new instances."""

    code: str = "TEMPLATE_INACTIVE"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__(f"Template is inactive: {template_id}")


# Lookup exceptions


class NotFoundError(WorkflowKernelError):
    """A referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class TemplateNotFoundError(NotFoundError):
    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__("WorkflowTemplate", template_id)


class EntryStepNotFoundError(NotFoundError):
    """Template has no step with order 1, so it cannot be started."""

    code: str = "ENTRY_STEP_NOT_FOUND"

    def __init__(self, template_id: str):
        self.template_id = template_id
        super().__init__("WorkflowStep(order=1)", template_id)


class StepNotFoundError(NotFoundError):
    code: str = "STEP_NOT_FOUND"

    def __init__(self, step_id: str):
        self.step_id = step_id
        super().__init__("WorkflowStep", step_id)


class InstanceNotFoundError(NotFoundError):
    code: str = "INSTANCE_NOT_FOUND"

    def __init__(self, instance_id: str):
        self.instance_id = instance_id
        super().__init__("WorkflowInstance", instance_id)


# Assignment exceptions


class AssignmentError(WorkflowKernelError):
    """Base exception for assignee resolution errors."""

    code: str = "ASSIGNMENT_ERROR"


class NoEligibleAssigneeError(AssignmentError):
    """No active user holds the role required by the step."""

    code: str = "NO_ELIGIBLE_ASSIGNEE"

    def __init__(self, role_id: str, step_id: str | None = None):
        self.role_id = role_id
        self.step_id = step_id
        target = f" for step {step_id}" if step_id else ""
        super().__init__(f"No eligible assignee with role {role_id}{target}")


# Action exceptions


class ActionError(WorkflowKernelError):
    """Base exception for rejected action submissions."""

    code: str = "ACTION_ERROR"


class UnauthorizedActionError(ActionError):
    """Actor is not the current assignee of the instance."""

    code: str = "UNAUTHORIZED_ACTION"

    def __init__(
        self,
        instance_id: str,
        actor_id: str,
        current_assignee_id: str | None,
    ):
        self.instance_id = instance_id
        self.actor_id = actor_id
        self.current_assignee_id = current_assignee_id
        super().__init__(
            f"User {actor_id} is not authorized to act on instance "
            f"{instance_id} (current assignee: {current_assignee_id})"
        )


class InstanceClosedError(ActionError):
    """Instance is in a terminal state and accepts no further actions."""

    code: str = "INSTANCE_CLOSED"

    def __init__(self, instance_id: str, status: str):
        self.instance_id = instance_id
        self.status = status
        super().__init__(f"Instance {instance_id} is closed ({status})")


class ForbiddenActionError(ActionError):
    """Action type is not allowed on the current step."""

    code: str = "FORBIDDEN_ACTION"

    def __init__(self, step_id: str, action_type: str, reason: str):
        self.step_id = step_id
        self.action_type = action_type
        self.reason = reason
        super().__init__(
            f"Action {action_type} forbidden on step {step_id}: {reason}"
        )


# Concurrency exceptions


class ConcurrencyError(WorkflowKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrencyConflictError(ConcurrencyError):
    """A competing transaction modified the same instance."""

    code: str = "CONCURRENCY_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str | None, detail: str = ""):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.detail = detail
        suffix = f": {detail}" if detail else ""
        super().__init__(
            f"Concurrency conflict on {entity_type} {entity_id}{suffix}"
        )


# Immutability exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Actions and assignments are append-only history; templates, steps and
    transitions are frozen once published; nothing is ever deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Storage exceptions


class InternalError(WorkflowKernelError):
    """Unexpected storage failure; the raw driver error is not exposed."""

    code: str = "INTERNAL_ERROR"

    def __init__(self, operation: str, cause_type: str):
        self.operation = operation
        self.cause_type = cause_type
        super().__init__(f"Internal error during {operation} ({cause_type})")


def to_error_payload(exc: WorkflowKernelError) -> dict[str, Any]:
    """Render a kernel error as a JSON-safe ``{code, message, details}`` dict."""
    details: dict[str, Any] = {}
    for key, value in vars(exc).items():
        if key.startswith("_"):
            continue
        if value is None or isinstance(value, (str, int, float, bool, list, dict)):
            details[key] = value
        else:
            details[key] = str(value)
    return {"code": exc.code, "message": str(exc), "details": details}
