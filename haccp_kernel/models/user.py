"""
Module: haccp_kernel.models.user
Responsibility: ORM persistence for staff members who author documents and
    act as task assignees.
Architecture position: Kernel > Models.  May import from db/base.py only.

Audit relevance:
    User ids are the actor identities recorded on every audit event.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import BigInteger, Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from haccp_kernel.db.base import Base

if TYPE_CHECKING:
    from haccp_kernel.domain.workflow import Participant


class UserModel(Base):
    """A facility employee with an optional Telegram chat binding."""

    __tablename__ = "users"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, default="employee")
    telegram_chat_id: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True, unique=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return f"<User {self.id} {self.name} role={self.role}>"

    def to_participant(self) -> Participant:
        """Convert ORM model to the notification recipient DTO."""
        from haccp_kernel.domain.workflow import Participant

        return Participant(
            user_id=self.id,
            name=self.name,
            telegram_chat_id=self.telegram_chat_id,
        )
