"""
Module: haccp_kernel.models.sequence_counter
Responsibility: ORM persistence for named, row-locked sequence counters.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One row per sequence name (unique constraint).
    - current_value only ever grows; SequenceService is its sole writer and
      holds the row lock (SELECT ... FOR UPDATE) while incrementing.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from haccp_kernel.db.base import Base


class SequenceCounter(Base):
    """Current value of one named sequence, e.g. ``audit_event``."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<SequenceCounter {self.name}={self.current_value}>"
