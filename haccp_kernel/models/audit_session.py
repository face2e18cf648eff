"""
Module: haccp_kernel.models.audit_session
Responsibility: ORM persistence for inspection ("audit mode") sessions.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - At most one open session at a time (enforced by AuditModeService under
      a row lock on the open session).
    - ended_at, once set, never changes.
"""

from datetime import datetime

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from haccp_kernel.db.base import Base


class AuditSessionModel(Base):
    """An inspection window during which workflow writes are refused."""

    __tablename__ = "audit_sessions"

    __table_args__ = (
        Index("ix_audit_sessions_ended_at", "ended_at"),
    )

    auditor_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    auditor_name: Mapped[str] = mapped_column(String(200), nullable=False)
    audit_type: Mapped[str] = mapped_column(String(100), nullable=False)
    started_at: Mapped[datetime] = mapped_column(nullable=False)
    ended_at: Mapped[datetime | None] = mapped_column(nullable=True)
    ended_by: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)

    def __repr__(self) -> str:
        state = "open" if self.is_active else "closed"
        return f"<AuditSession {self.id} {self.audit_type} {state}>"

    @property
    def is_active(self) -> bool:
        return self.ended_at is None
