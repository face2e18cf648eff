"""
Module: haccp_kernel.models.document
Responsibility: ORM persistence for documents under approval and the ordered
    tasks that make up their approval chain.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One task per step: UNIQUE(document_id, step).
    - Valid status values: DB check constraints on documents and tasks.
    - Terminal tasks are frozen: an ORM before_update listener refuses any
      change to a task whose stored status is no longer ``pending``.
    - Optimistic versioning: both tables carry a ``version`` column wired
      as SQLAlchemy ``version_id_col``.  A write based on a stale read
      raises StaleDataError at flush instead of overwriting the winner.

Failure modes:
    - IntegrityError on a duplicate (document_id, step).
    - ImmutabilityViolationError on an update of a decided task.
    - StaleDataError when a concurrent transaction already bumped a version.

Audit relevance:
    A task's status, comment and completed_at are the signed record of who
    approved what and when.  They are written exactly once.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from haccp_kernel.db.base import Base
from haccp_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from haccp_kernel.domain.workflow import DocumentSnapshot, TaskSnapshot


class DocumentModel(Base):
    """Persistent document moving through an approval chain.

    Contract:
        ``current_step`` and ``status`` are written only by the workflow
        service during approval.  ``current_step`` may run one past the
        last step once the chain is exhausted.
    """

    __tablename__ = "documents"

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'in_progress', 'approved', 'rejected', "
            "'in_execution', 'executed')",
            name="ck_documents_valid_status",
        ),
        CheckConstraint("current_step >= 0", name="ck_documents_step_nonnegative"),
        Index("ix_documents_author", "author_id"),
        Index("ix_documents_status", "status"),
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="in_progress")
    current_step: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    recipient_id: Mapped[int | None] = mapped_column(
        ForeignKey("users.id"), nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    tasks: Mapped[list["TaskModel"]] = relationship(
        "TaskModel",
        back_populates="document",
        order_by="TaskModel.step",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Document {self.id} status={self.status} "
            f"current_step={self.current_step}>"
        )

    def to_snapshot(self) -> DocumentSnapshot:
        """Convert ORM model to frozen domain snapshot (tasks included)."""
        from haccp_kernel.domain.workflow import DocumentSnapshot, DocumentStatus

        return DocumentSnapshot(
            document_id=self.id,
            title=self.title,
            status=DocumentStatus(self.status),
            current_step=self.current_step,
            author_id=self.author_id,
            recipient_id=self.recipient_id,
            body=self.body,
            created_at=self.created_at,
            tasks=tuple(t.to_snapshot() for t in sorted(self.tasks, key=lambda t: t.step)),
        )


class TaskModel(Base):
    """Persistent approval step.  Decided exactly once."""

    __tablename__ = "tasks"

    __table_args__ = (
        UniqueConstraint("document_id", "step", name="uq_tasks_document_step"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped')",
            name="ck_tasks_valid_status",
        ),
        CheckConstraint(
            "action IN ('approve', 'sign', 'review')",
            name="ck_tasks_valid_action",
        ),
        CheckConstraint("step >= 0", name="ck_tasks_step_nonnegative"),
        # Inbox lookup: pending tasks per assignee
        Index("ix_tasks_assignee_status", "assignee_id", "status"),
    )

    document_id: Mapped[int] = mapped_column(
        ForeignKey("documents.id"), nullable=False,
    )
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    action: Mapped[str] = mapped_column(String(20), nullable=False, default="approve")
    assignee_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    can_skip: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    comment_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    instruction: Mapped[str | None] = mapped_column(Text, nullable=True)
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    document: Mapped["DocumentModel"] = relationship(
        "DocumentModel",
        back_populates="tasks",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<Task {self.id} document={self.document_id} "
            f"step={self.step} status={self.status}>"
        )

    def to_snapshot(self) -> TaskSnapshot:
        """Convert ORM model to frozen domain snapshot."""
        from haccp_kernel.domain.workflow import TaskAction, TaskSnapshot, TaskStatus

        return TaskSnapshot(
            task_id=self.id,
            document_id=self.document_id,
            step=self.step,
            assignee_id=self.assignee_id,
            status=TaskStatus(self.status),
            action=TaskAction(self.action),
            can_skip=self.can_skip,
            comment_required=self.comment_required,
            instruction=self.instruction,
            comment=self.comment,
            completed_at=self.completed_at,
        )


# =============================================================================
# ORM-Level Immutability for Decided Tasks
# =============================================================================


@event.listens_for(TaskModel, "before_update")
def prevent_decided_task_update(mapper, connection, target):
    """Refuse any update to a task whose stored status is terminal."""
    history = inspect(target).attrs.status.history
    stored = history.deleted[0] if history.deleted else target.status
    if stored != "pending":
        raise ImmutabilityViolationError(
            entity_type="Task",
            entity_id=str(target.id),
            reason=f"Task already decided ({stored}) -- cannot modify",
        )


@event.listens_for(TaskModel, "before_delete")
def prevent_task_delete(mapper, connection, target):
    """Tasks are part of the approval record and are never deleted."""
    raise ImmutabilityViolationError(
        entity_type="Task",
        entity_id=str(target.id),
        reason="Approval tasks cannot be deleted",
    )
