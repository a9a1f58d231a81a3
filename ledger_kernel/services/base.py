"""
BaseService -- abstract base for the ledger kernel's write services.

Responsibility:
    Common constructor for every service that mutates the ledger store.
    A service receives the caller's SQLAlchemy ``Session`` (the unit of
    work) and an injected ``Clock``, and persists through
    ``session.flush()`` only.

Invariants enforced:
    - Services never call ``session.commit()`` or ``session.rollback()``.
      The caller (session_scope(), the settlement scheduler, or a test)
      commits exactly once at the top of the call chain, so a wallet
      credit, its transaction row and the position update land together
      or not at all.

Failure modes:
    - A subclass that commits on its own breaks the per-position atomicity
      of settlement.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a ``Session`` from the caller and flushes within it.
        ``clock`` defaults to the system clock.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
