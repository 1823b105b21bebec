"""
Module: fees_kernel.selectors.base
Responsibility: Abstract base class for all read-only query selectors.
    Selectors are the read side of the kernel: balances, ledgers and the
    unmatched-payment work list consumed by reporting layers.
Architecture position: Kernel > Selectors.  May import from db/ and
    models/.  MUST NOT import from services/ or outer layers.

Invariants enforced:
    - Read-only access: selectors MUST NOT call session.add(),
      session.delete(), session.commit() or session.flush().
    - DTO return convention: selectors return frozen dataclasses, never
      ORM instances.
    - Session ownership: the caller owns the session and its transaction
      scope, so a selector used inside a unit of work sees that unit's
      uncommitted writes.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from fees_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseSelector(ABC, Generic[ModelType]):
    """Abstract base class for all selectors."""

    def __init__(self, session: Session):
        self.session = session
