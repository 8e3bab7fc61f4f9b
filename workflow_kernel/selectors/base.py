"""
Module: workflow_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/ value objects.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors accept a Session from the caller but never
      add, delete, flush or commit.
    - DTO return convention: selectors return frozen dataclasses, not ORM
      instances.
    - Session ownership: the caller owns the session and its transaction.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseSelector(ABC):
    """
    Abstract base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only queries,
        and return DTOs.  They MUST NOT mutate any data.
    """

    def __init__(self, session: Session):
        self.session = session
