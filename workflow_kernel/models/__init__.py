"""ORM models for the workflow kernel."""

from workflow_kernel.models.directory import RoleModel, UserModel, UserRoleModel
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

__all__ = [
    "RoleModel",
    "UserModel",
    "UserRoleModel",
    "WorkflowActionModel",
    "WorkflowInstanceModel",
    "WorkflowStepAssignmentModel",
    "WorkflowStepModel",
    "WorkflowStepTransitionModel",
    "WorkflowTemplateModel",
]
