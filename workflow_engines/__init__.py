"""
Module: workflow_engines
Responsibility:
    Package entrypoint that re-exports the pure evaluation engines.

Architecture position:
    Engines -- pure evaluation layer, zero I/O.
    May only import workflow_kernel/domain and workflow_kernel.exceptions.
    MUST NOT import workflow_services, workflow_config, SQLAlchemy, or any
    kernel db/models/services/selectors module.

Invariants enforced:
    - Purity: engines never read the clock or touch storage.
    - Determinism: identical inputs always produce identical decisions.
"""

from workflow_engines.tracer import compute_input_fingerprint, traced_engine
from workflow_engines.transition import compute_next, evaluate_condition, select_transition

__all__ = [
    "compute_input_fingerprint",
    "compute_next",
    "evaluate_condition",
    "select_transition",
    "traced_engine",
]
