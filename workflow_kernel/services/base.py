"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write-side service in the kernel.  Services receive a SQLAlchemy
    ``Session`` and persist through ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The boundary
    (``workflow_services.workflow_api``) or the test harness owns
    commit/rollback, so a failed action leaves no partial writes.
"""

from abc import ABC

from sqlalchemy.orm import Session

from workflow_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` and an optional ``Clock``.  All
        timestamps written by a service come from its clock.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read projections -- those belong in
          ``workflow_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
