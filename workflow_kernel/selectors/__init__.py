"""Selectors for the workflow kernel (read side)."""

from workflow_kernel.selectors.base import BaseSelector
from workflow_kernel.selectors.workflow_selector import WorkflowSelector

__all__ = [
    "BaseSelector",
    "WorkflowSelector",
]
