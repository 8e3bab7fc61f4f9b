"""
Workflow Kernel

A transactional approval-workflow engine with:
- Reusable multi-step templates with conditional branching
- Rejection routing to earlier steps
- Role-based deterministic assignee resolution
- Append-only audit history of every accepted action
"""

__version__ = "0.1.0"
