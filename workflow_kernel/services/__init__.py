"""Services for the workflow kernel (write side)."""

from workflow_kernel.services.action_recorder import ActionRecorder
from workflow_kernel.services.assignment_resolver import (
    LOWEST_ID,
    PRIMARY_THEN_LOWEST_ID,
    AssignmentResolver,
)
from workflow_kernel.services.instance_service import InstanceService
from workflow_kernel.services.template_service import TemplateService

__all__ = [
    "ActionRecorder",
    "AssignmentResolver",
    "InstanceService",
    "LOWEST_ID",
    "PRIMARY_THEN_LOWEST_ID",
    "TemplateService",
]
