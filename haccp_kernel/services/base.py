"""
BaseService -- abstract base for kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every writing service in the kernel layer.  Concrete services receive
    a SQLAlchemy ``Session`` and use ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or rollback themselves.  The caller
    (DecisionOrchestrator, the CLI, or a test) owns commit/rollback, so a
    task decision and its audit event land atomically.

Failure modes:
    - A subclass calling ``session.commit()`` would let a decision commit
      without its audit event.
"""

from abc import ABC

from sqlalchemy.orm import Session

from haccp_kernel.domain.clock import Clock, SystemClock


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: Open SQLAlchemy session owned by the caller.
            clock: Clock for timestamps. Defaults to SystemClock.
        """
        self.session = session
        self.clock = clock or SystemClock()
