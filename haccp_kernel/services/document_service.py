"""
haccp_kernel.services.document_service -- Documents, approval chains and users.

Responsibility:
    Creates documents together with their ordered task chain, reads them
    back as snapshots, answers "what can this user act on right now", and
    maintains the small amount of user master data the workflow needs.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/.
    Flush-only: the caller owns the transaction.

Invariants enforced:
    - A new document starts ``in_progress`` at ``current_step = 0`` with
      tasks at steps 0..N-1, all ``pending``.
    - Every referenced user (author, assignees, recipient) exists.
    - The inbox only lists tasks that would pass the step check of a
      decision: pending, on the document's current step, document not
      terminal.

Failure modes:
    - DocumentValidationError on a short title, an empty chain or an
      unknown action.
    - UserNotFoundError when a referenced user is missing.
    - DocumentNotFoundError on reads of unknown documents.
"""

from __future__ import annotations

from sqlalchemy import select

from haccp_engines.approval_chain import validate_actor
from haccp_kernel.domain.workflow import (
    TERMINAL_APPROVAL_STATUSES,
    AssigneeNotification,
    DocumentCreated,
    DocumentSnapshot,
    DocumentStatus,
    Participant,
    StageSpec,
    TaskAction,
    TaskSnapshot,
    TaskStatus,
)
from haccp_kernel.exceptions import (
    DocumentNotFoundError,
    DocumentValidationError,
    InvalidUserError,
    UserNotFoundError,
)
from haccp_kernel.logging_config import get_logger
from haccp_kernel.models.document import DocumentModel, TaskModel
from haccp_kernel.models.user import UserModel
from haccp_kernel.services.base import BaseService

logger = get_logger("services.document")

MIN_TITLE_LENGTH = 3


class DocumentService(BaseService):
    """Creates and reads documents and their approval chains."""

    def create_document(
        self,
        author_id: int,
        title: str,
        body: str,
        stages: list[StageSpec],
        recipient_id: int | None = None,
    ) -> DocumentCreated:
        """Create a document and one pending task per stage.

        Returns the document snapshot and an AssigneeNotification for the
        step-0 assignee.
        """
        author_id = validate_actor(author_id)
        title = (title or "").strip()
        if len(title) < MIN_TITLE_LENGTH:
            raise DocumentValidationError(
                "title", f"must be at least {MIN_TITLE_LENGTH} characters",
            )
        if not stages:
            raise DocumentValidationError("stages", "at least one stage is required")

        actions = []
        for stage in stages:
            try:
                actions.append(TaskAction(stage.action))
            except ValueError:
                raise DocumentValidationError(
                    "action", f"unknown action {stage.action!r}",
                ) from None

        referenced = {author_id} | {s.assignee_id for s in stages}
        if recipient_id is not None:
            referenced.add(recipient_id)
        self._require_users(referenced)

        now = self.clock.now()
        document = DocumentModel(
            title=title,
            body=body or "",
            status=DocumentStatus.IN_PROGRESS.value,
            current_step=0,
            author_id=author_id,
            recipient_id=recipient_id,
            created_at=now,
        )
        self.session.add(document)
        self.session.flush()

        for step, (stage, action) in enumerate(zip(stages, actions)):
            self.session.add(TaskModel(
                document_id=document.id,
                step=step,
                status=TaskStatus.PENDING.value,
                action=action.value,
                assignee_id=stage.assignee_id,
                can_skip=stage.can_skip,
                comment_required=stage.comment_required,
                instruction=stage.instruction,
            ))
        self.session.flush()
        self.session.refresh(document, attribute_names=["tasks"])

        snapshot = document.to_snapshot()
        first = snapshot.tasks[0]

        logger.info(
            "document_created",
            extra={
                "document_id": snapshot.document_id,
                "author_id": author_id,
                "steps": len(snapshot.tasks),
            },
        )

        return DocumentCreated(
            document=snapshot,
            notifications=(
                AssigneeNotification(
                    document_id=snapshot.document_id,
                    assignee_id=first.assignee_id,
                    task_id=first.task_id,
                    step=first.step,
                ),
            ),
        )

    def get_document(self, document_id: int) -> DocumentSnapshot:
        """Document snapshot with its tasks ordered by step."""
        return self._load_document_model(document_id).to_snapshot()

    def list_actionable_tasks(self, user_id: int) -> list[TaskSnapshot]:
        """Pending tasks of ``user_id`` that a decision could act on now."""
        terminal = [s.value for s in TERMINAL_APPROVAL_STATUSES]
        rows = self.session.execute(
            select(TaskModel)
            .join(DocumentModel, TaskModel.document_id == DocumentModel.id)
            .where(
                TaskModel.assignee_id == user_id,
                TaskModel.status == TaskStatus.PENDING.value,
                TaskModel.step == DocumentModel.current_step,
                DocumentModel.status.not_in(terminal),
            )
            .order_by(DocumentModel.created_at, DocumentModel.id)
        ).scalars().all()
        return [t.to_snapshot() for t in rows]

    def _load_document_model(self, document_id: int) -> DocumentModel:
        """Load document model by id, raise if not found."""
        model = self.session.execute(
            select(DocumentModel).where(DocumentModel.id == document_id)
        ).scalar_one_or_none()

        if model is None:
            raise DocumentNotFoundError(document_id)

        return model

    def _require_users(self, user_ids: set[int]) -> None:
        found = set(self.session.execute(
            select(UserModel.id).where(UserModel.id.in_(user_ids))
        ).scalars().all())
        missing = user_ids - found
        if missing:
            raise UserNotFoundError(list(missing))


class UserService(BaseService):
    """Minimal user master data: creation and Telegram binding."""

    def create_user(
        self,
        name: str,
        role: str = "employee",
        telegram_chat_id: int | None = None,
    ) -> Participant:
        name = (name or "").strip()
        if not name:
            raise InvalidUserError("name", "must not be blank")

        user = UserModel(
            name=name,
            role=role,
            telegram_chat_id=telegram_chat_id,
            created_at=self.clock.now(),
        )
        self.session.add(user)
        self.session.flush()

        logger.info("user_created", extra={"user_id": user.id, "role": role})
        return user.to_participant()

    def bind_telegram(self, user_id: int, chat_id: int) -> Participant:
        """Attach a Telegram chat to a user, replacing any previous one."""
        if isinstance(chat_id, bool) or not isinstance(chat_id, int):
            raise InvalidUserError("telegram_chat_id", f"not an integer: {chat_id!r}")

        user = self._load_user_model(user_id)
        user.telegram_chat_id = chat_id
        self.session.flush()

        logger.info("telegram_bound", extra={"user_id": user_id})
        return user.to_participant()

    def get_user(self, user_id: int) -> Participant:
        return self._load_user_model(user_id).to_participant()

    def _load_user_model(self, user_id: int) -> UserModel:
        user = self.session.get(UserModel, user_id)
        if user is None:
            raise UserNotFoundError([user_id])
        return user
