"""
workflow_services -- Package init and public API.

Responsibility:
    Transactional boundary of the workflow engine.  Owns session lifetime,
    commit/rollback, mapping of storage failures to typed kernel errors,
    and post-commit delivery of workflow outcome records.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

    Dependency direction (enforced by tests/architecture/test_import_boundaries.py):
        workflow_services/ -> workflow_engines/  (allowed)
        workflow_services/ -> workflow_kernel/   (allowed)
        workflow_services/ -> workflow_config/   (allowed, bootstrap only)
        workflow_engines/  -> workflow_services/ (FORBIDDEN)
        workflow_kernel/   -> workflow_services/ (FORBIDDEN)

Failure modes:
    - Every public operation raises WorkflowKernelError subclasses only.
"""

from workflow_services.bootstrap import build_workflow_api
from workflow_services.requests import (
    CreateWorkflowTemplateRequest,
    StepInput,
    TransitionInput,
)
from workflow_services.serialization import to_payload
from workflow_services.workflow_api import WorkflowApi

__all__ = [
    "CreateWorkflowTemplateRequest",
    "StepInput",
    "TransitionInput",
    "WorkflowApi",
    "build_workflow_api",
    "to_payload",
]
