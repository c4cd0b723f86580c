"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every persistent service in the kernel layer.  All concrete services
    inherit from BaseService, receiving a SQLAlchemy ``Session`` that they
    use via ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The caller
    (ShiftCheckOrchestrator, AutoAbandonSweeper, or test harness) owns
    commit/rollback, which is what keeps a verification row, its issue and
    the counter increment atomic.

Failure modes:
    - If a subclass calls ``session.commit()`` itself, after-commit events
      fire before the rest of the unit of work is durable.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from firestock_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide query-only (read) methods -- those belong
          in ``firestock_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        """
        Initialize the service.

        Args:
            session: SQLAlchemy session for database operations.
        """
        self.session = session
