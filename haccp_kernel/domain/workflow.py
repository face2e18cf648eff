"""
Approval workflow domain types (``haccp_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the document approval chain.  Defines the task
and document status sets, the decision vocabulary, immutable snapshots
of documents and tasks, the decision context handed to the engine, and
the plan / result / notification intent records it produces.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, or outer layers.  May import
only from ``haccp_kernel.exceptions``.

Invariants enforced
-------------------
* Task lifecycle -- ``TASK_TRANSITIONS`` defines the only valid task
  status transitions: ``pending`` to exactly one terminal status.
* Decision mapping -- ``DECISION_TASK_STATUS`` is the single mapping from
  a decision verb to the terminal task status it produces.
* Display-only actions -- ``TaskAction`` carries labels; nothing in the
  engine branches on it.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Union

from haccp_kernel.exceptions import InvalidDecisionError


# =========================================================================
# Document and Task Status
# =========================================================================


class DocumentStatus(str, Enum):
    """Document lifecycle states."""

    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"
    IN_EXECUTION = "in_execution"
    EXECUTED = "executed"


# Once reached, no task on the document may be decided.
TERMINAL_APPROVAL_STATUSES: frozenset[DocumentStatus] = frozenset({
    DocumentStatus.APPROVED,
    DocumentStatus.REJECTED,
})


class TaskStatus(str, Enum):
    """Task lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


TASK_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({
        TaskStatus.APPROVED,
        TaskStatus.REJECTED,
        TaskStatus.SKIPPED,
    }),
    TaskStatus.APPROVED: frozenset(),
    TaskStatus.REJECTED: frozenset(),
    TaskStatus.SKIPPED: frozenset(),
}


class TaskAction(str, Enum):
    """What the assignee is asked to do.  Display semantics only."""

    APPROVE = "approve"
    SIGN = "sign"
    REVIEW = "review"


@dataclass(frozen=True)
class ActionLabel:
    label: str
    description: str
    primary_button: str


ACTION_LABELS: dict[TaskAction, ActionLabel] = {
    TaskAction.APPROVE: ActionLabel(
        label="Approval",
        description="Approve the document",
        primary_button="Approve",
    ),
    TaskAction.SIGN: ActionLabel(
        label="Signature",
        description="Sign the document",
        primary_button="Sign",
    ),
    TaskAction.REVIEW: ActionLabel(
        label="Review",
        description="Read the document and leave a comment",
        primary_button="Mark as reviewed",
    ),
}


def action_label(action: TaskAction | str) -> ActionLabel:
    """Label for an action; unknown actions fall back to ``approve``."""
    try:
        return ACTION_LABELS[TaskAction(action)]
    except ValueError:
        return ACTION_LABELS[TaskAction.APPROVE]


# =========================================================================
# Decisions
# =========================================================================


class Decision(str, Enum):
    """Verbs an assignee may apply to a task."""

    COMPLETE = "complete"
    REJECT = "reject"
    SKIP = "skip"

    @classmethod
    def parse(cls, value: object) -> Decision:
        """Coerce a raw value into a Decision or raise InvalidDecisionError."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise InvalidDecisionError(value)
        try:
            return cls(value)
        except ValueError:
            raise InvalidDecisionError(value) from None


DECISION_TASK_STATUS: dict[Decision, TaskStatus] = {
    Decision.COMPLETE: TaskStatus.APPROVED,
    Decision.REJECT: TaskStatus.REJECTED,
    Decision.SKIP: TaskStatus.SKIPPED,
}


# =========================================================================
# Snapshots
# =========================================================================


@dataclass(frozen=True)
class Participant:
    """A user who may receive a notification."""

    user_id: int
    name: str
    telegram_chat_id: int | None = None


@dataclass(frozen=True)
class TaskSnapshot:
    """Immutable snapshot of one step in a document's approval chain."""

    task_id: int
    document_id: int
    step: int
    assignee_id: int
    status: TaskStatus = TaskStatus.PENDING
    action: TaskAction = TaskAction.APPROVE
    can_skip: bool = False
    comment_required: bool = False
    instruction: str | None = None
    comment: str | None = None
    completed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.status == TaskStatus.PENDING


@dataclass(frozen=True)
class DocumentSnapshot:
    """Immutable snapshot of a document and its ordered task chain."""

    document_id: int
    title: str
    status: DocumentStatus
    current_step: int
    author_id: int
    recipient_id: int | None = None
    body: str = ""
    created_at: datetime | None = None
    tasks: tuple[TaskSnapshot, ...] = ()

    def task_at_step(self, step: int) -> TaskSnapshot | None:
        for task in self.tasks:
            if task.step == step:
                return task
        return None


@dataclass(frozen=True)
class DecisionContext:
    """Consistent snapshot the engine validates a decision against.

    ``tasks`` holds every task of ``document`` ordered by ``step``
    (``task`` included).  ``participants`` covers the author and every
    assignee so notification recipients resolve without another read.
    """

    task: TaskSnapshot
    document: DocumentSnapshot
    tasks: tuple[TaskSnapshot, ...]
    participants: tuple[Participant, ...] = ()

    def participant(self, user_id: int) -> Participant | None:
        for p in self.participants:
            if p.user_id == user_id:
                return p
        return None


# =========================================================================
# Notification intents
# =========================================================================


@dataclass(frozen=True)
class AuthorNotification:
    """Tell the document author the approval outcome."""

    document_id: int
    author_id: int
    status: DocumentStatus
    comment: str | None = None


@dataclass(frozen=True)
class AssigneeNotification:
    """Tell an assignee that their task is now actionable."""

    document_id: int
    assignee_id: int
    task_id: int
    step: int


NotificationIntent = Union[AuthorNotification, AssigneeNotification]


# =========================================================================
# Document creation
# =========================================================================


@dataclass(frozen=True)
class StageSpec:
    """One requested step of a new document's approval chain."""

    assignee_id: int
    action: TaskAction | str = TaskAction.APPROVE
    can_skip: bool = False
    comment_required: bool = False
    instruction: str | None = None


@dataclass(frozen=True)
class DocumentCreated:
    """A freshly created document plus the notification for its first step."""

    document: DocumentSnapshot
    notifications: tuple[NotificationIntent, ...] = ()


# =========================================================================
# Audit mode
# =========================================================================


@dataclass(frozen=True)
class AuditSessionInfo:
    """An open or closed inspection window."""

    session_id: int
    auditor_id: int
    auditor_name: str
    audit_type: str
    started_at: datetime
    ended_at: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None


# =========================================================================
# Plan and Result
# =========================================================================


@dataclass(frozen=True)
class TaskUpdate:
    """Terminal state written to the decided task."""

    task_id: int
    status: TaskStatus
    comment: str | None
    completed_at: datetime


@dataclass(frozen=True)
class DocumentUpdate:
    """Document fields changed by a decision.  ``None`` means unchanged."""

    document_id: int
    status: DocumentStatus | None = None
    current_step: int | None = None


@dataclass(frozen=True)
class DecisionPlan:
    """Everything one decision will write, plus the intents it produces."""

    decision: Decision
    task_update: TaskUpdate
    document_update: DocumentUpdate
    notifications: tuple[NotificationIntent, ...] = ()


@dataclass(frozen=True)
class DecisionResult:
    """Outcome of a committed decision.

    Carries actor, task, decision and document so an audit recorder can
    log the event without re-reading storage.
    """

    actor_id: int
    task_id: int
    document_id: int
    decision: Decision
    task_status: TaskStatus
    document_status: DocumentStatus
    current_step: int
    completed_at: datetime
    comment: str | None = None
    notifications: tuple[NotificationIntent, ...] = ()
