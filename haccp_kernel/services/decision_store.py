"""
DecisionStore -- transactional read-modify-write boundary for task decisions.

Responsibility:
    Loads a consistent snapshot of a task, its document, every sibling task
    and the users involved, with row locks held for the rest of the
    transaction.  Applies a ``DecisionPlan`` to the same locked rows.

Architecture position:
    Kernel > Services -- imperative shell.  Called by WorkflowService.
    Flush-only: the caller owns commit/rollback.

Invariants enforced:
    - Lock order is document first, then its tasks by step.  Two decisions
      on the same document therefore serialize instead of deadlocking.
    - Writes go through the ORM rows read under the lock; the ``version``
      columns turn a write based on a stale read into StaleDataError.

Failure modes:
    - TaskNotFoundError if the task id does not exist.
    - OptimisticLockError if a concurrent transaction already changed the
      task or document (version mismatch at flush).
    - StorageFailureError for any other database failure.
"""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from haccp_kernel.domain.clock import Clock
from haccp_kernel.domain.workflow import DecisionContext, DecisionPlan
from haccp_kernel.exceptions import (
    OptimisticLockError,
    StorageFailureError,
    TaskNotFoundError,
)
from haccp_kernel.logging_config import get_logger
from haccp_kernel.models.document import DocumentModel, TaskModel
from haccp_kernel.models.user import UserModel
from haccp_kernel.services.base import BaseService

logger = get_logger("services.decision_store")


class DecisionStore(BaseService):
    """Loads decision contexts and applies decision plans."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def load_decision_context(
        self,
        task_id: int,
        for_update: bool = True,
    ) -> DecisionContext:
        """Snapshot the task, its document, sibling tasks and participants.

        With ``for_update`` the document and all of its tasks stay
        row-locked until the caller's transaction ends.
        """
        try:
            task_ref = self.session.execute(
                select(TaskModel.id, TaskModel.document_id).where(TaskModel.id == task_id)
            ).one_or_none()
            if task_ref is None:
                raise TaskNotFoundError(task_id)

            document_stmt = (
                select(DocumentModel)
                .where(DocumentModel.id == task_ref.document_id)
                .execution_options(populate_existing=True)
            )
            tasks_stmt = (
                select(TaskModel)
                .where(TaskModel.document_id == task_ref.document_id)
                .order_by(TaskModel.step)
                .execution_options(populate_existing=True)
            )
            if for_update:
                document_stmt = document_stmt.with_for_update()
                tasks_stmt = tasks_stmt.with_for_update()

            document = self.session.execute(document_stmt).scalar_one()
            tasks = self.session.execute(tasks_stmt).scalars().all()

            user_ids = {document.author_id} | {t.assignee_id for t in tasks}
            users = self.session.execute(
                select(UserModel).where(UserModel.id.in_(user_ids))
            ).scalars().all()
        except SQLAlchemyError as exc:
            raise StorageFailureError("load_decision_context", str(exc)) from exc

        task_snapshots = tuple(t.to_snapshot() for t in tasks)
        target = next(t for t in task_snapshots if t.task_id == task_id)
        document_snapshot = document.to_snapshot()

        return DecisionContext(
            task=target,
            document=document_snapshot,
            tasks=task_snapshots,
            participants=tuple(
                u.to_participant() for u in sorted(users, key=lambda u: u.id)
            ),
        )

    def commit_decision(self, plan: DecisionPlan) -> None:
        """Apply ``plan`` to the rows loaded by ``load_decision_context``.

        Flushes but does not commit.
        """
        task_update = plan.task_update
        document_update = plan.document_update

        try:
            task = self.session.get(TaskModel, task_update.task_id)
            document = self.session.get(DocumentModel, document_update.document_id)
            if task is None:
                raise TaskNotFoundError(task_update.task_id)

            task.status = task_update.status.value
            task.comment = task_update.comment
            task.completed_at = task_update.completed_at

            if document_update.status is not None:
                document.status = document_update.status.value
            if document_update.current_step is not None:
                document.current_step = document_update.current_step
            document.updated_at = task_update.completed_at

            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "decision_version_conflict",
                extra={
                    "task_id": task_update.task_id,
                    "document_id": document_update.document_id,
                },
            )
            raise OptimisticLockError("Task", str(task_update.task_id)) from exc
        except SQLAlchemyError as exc:
            raise StorageFailureError("commit_decision", str(exc)) from exc
