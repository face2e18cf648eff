"""
SequenceService -- monotonic numbers from a locked counter row.

Responsibility:
    Hands out the next value of a named sequence.  The audit trail takes
    its ``seq`` from here, so concurrent writes on unrelated documents
    queue on one counter row instead of racing on ``max(seq) + 1``.

Architecture position:
    Kernel > Services -- flush-only infrastructure, called by AuditorService.

Invariants enforced:
    - The counter row is the only source of the next value; the table the
      numbers end up in is never scanned for its maximum.
    - ``SELECT ... FOR UPDATE`` holds the row until the caller's transaction
      ends, so a second allocation waits instead of failing.
    - A rolled-back transaction gives its value back.

Failure modes:
    - IntegrityError when two transactions create the same counter row on
      first use; absorbed by a savepoint and a locked re-read.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from haccp_kernel.logging_config import get_logger
from haccp_kernel.models.sequence_counter import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """Allocates values of named sequences inside the caller's transaction.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    AUDIT_EVENT = "audit_event"

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """Lock the counter row, increment it and return the new value (>= 1).

        The lock is held until the caller commits or rolls back.
        """
        counter = self._locked_counter(sequence_name)

        if counter is None:
            savepoint = self._session.begin_nested()
            try:
                self._session.add(SequenceCounter(name=sequence_name, current_value=1))
                self._session.flush()
                savepoint.commit()
                logger.debug(
                    "sequence_allocated",
                    extra={"sequence_name": sequence_name, "value": 1},
                )
                return 1
            except IntegrityError:
                savepoint.rollback()
                logger.debug(
                    "sequence_counter_race_retry",
                    extra={"sequence_name": sequence_name},
                )
                counter = self._locked_counter(sequence_name)
                if counter is None:
                    raise

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Last allocated value, or None if the sequence was never used."""
        return self._session.execute(
            select(SequenceCounter.current_value)
            .where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()

    def initialize_sequences(self) -> None:
        """Create the well-known counter rows at zero.  Run once at setup."""
        for name in (self.AUDIT_EVENT,):
            if self.current_value(name) is None:
                self._session.add(SequenceCounter(name=name, current_value=0))
        self._session.flush()
