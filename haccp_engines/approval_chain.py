"""
haccp_engines.approval_chain -- Pure approval-chain state machine.

Responsibility:
    Given a consistent snapshot of a document and its task chain, decide
    whether a decision on one task is legal, and if so compute every
    write it causes and the notification intents it produces.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import haccp_kernel/domain/ types and haccp_kernel/exceptions.

Invariants enforced:
    - Single actionable step: a task may be decided only when its step is
      the document's ``current_step``.
    - Terminal one-shot: a task leaves ``pending`` exactly once.
    - Reject short-circuits: the pointer stays put and no later task is
      looked at.
    - Scan-based advance: the pointer moves to the first *pending* task
      strictly after the decided step, so gaps in step numbering are fine.
    - Purity: no clock access, no I/O, no database.  ``now`` is passed in.

Failure modes (checked in this order, first failure wins):
    - InvalidActorError / InvalidDecisionError on malformed input.
    - NotAssigneeError, NotYetActionableError, AlreadyDecidedError,
      SkipNotAllowedError, CommentRequiredError.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime

from haccp_kernel.domain.workflow import (
    DECISION_TASK_STATUS,
    TASK_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    AssigneeNotification,
    AuthorNotification,
    Decision,
    DecisionContext,
    DecisionPlan,
    DocumentStatus,
    DocumentUpdate,
    NotificationIntent,
    TaskSnapshot,
    TaskStatus,
    TaskUpdate,
)
from haccp_kernel.exceptions import (
    AlreadyDecidedError,
    CommentRequiredError,
    InvalidActorError,
    NotAssigneeError,
    NotYetActionableError,
    SkipNotAllowedError,
)


def validate_actor(actor_id: object) -> int:
    """Return ``actor_id`` if it is a positive integer identity."""
    if isinstance(actor_id, bool) or not isinstance(actor_id, int) or actor_id <= 0:
        raise InvalidActorError(actor_id)
    return actor_id


def validate_decision(
    context: DecisionContext,
    actor_id: int,
    decision: Decision,
    comment: str | None,
) -> None:
    """Run the ordered legality checks for a decision on ``context.task``.

    The task's existence is established by whoever built the context.
    """
    task = context.task
    document = context.document

    if task.assignee_id != actor_id:
        raise NotAssigneeError(task.task_id, actor_id, task.assignee_id)

    if document.current_step != task.step:
        raise NotYetActionableError(task.task_id, task.step, document.current_step)

    if not task.is_pending:
        raise AlreadyDecidedError(task.task_id, task.status.value)

    # Unreachable through this engine, but a terminal document must never
    # reopen even if the rows were edited by hand.
    if document.status in TERMINAL_APPROVAL_STATUSES:
        raise AlreadyDecidedError(task.task_id, document.status.value)

    if decision == Decision.SKIP and not task.can_skip:
        raise SkipNotAllowedError(task.task_id)

    if decision == Decision.COMPLETE and task.comment_required:
        if not (comment or "").strip():
            raise CommentRequiredError(task.task_id)


def next_pending_task(
    tasks: Iterable[TaskSnapshot],
    after_step: int,
) -> TaskSnapshot | None:
    """First pending task with ``step > after_step``, in step order."""
    for task in sorted(tasks, key=lambda t: t.step):
        if task.step > after_step and task.status == TaskStatus.PENDING:
            return task
    return None


def plan_decision(
    context: DecisionContext,
    actor_id: object,
    decision: object,
    comment: str | None,
    now: datetime,
) -> DecisionPlan:
    """Validate a decision and compute its writes and notification intents.

    Args:
        context: Snapshot of the task, its document and sibling tasks.
        actor_id: Authenticated identity of the caller.
        decision: ``complete`` / ``reject`` / ``skip`` (str or Decision).
        comment: Optional free text; stored verbatim, empty becomes None.
        now: Timestamp for ``completed_at``.

    Returns:
        DecisionPlan with the task update, the document update and zero
        or one notification intent.
    """
    actor = validate_actor(actor_id)
    verb = Decision.parse(decision)
    validate_decision(context, actor, verb, comment)

    task = context.task
    document = context.document
    new_status = DECISION_TASK_STATUS[verb]
    assert new_status in TASK_TRANSITIONS[task.status], (
        f"pending task cannot move to {new_status.value}"
    )

    stored_comment = comment if comment else None
    task_update = TaskUpdate(
        task_id=task.task_id,
        status=new_status,
        comment=stored_comment,
        completed_at=now,
    )
    notifications: list[NotificationIntent] = []

    if verb == Decision.REJECT:
        notifications.append(AuthorNotification(
            document_id=document.document_id,
            author_id=document.author_id,
            status=DocumentStatus.REJECTED,
            comment=stored_comment,
        ))
        return DecisionPlan(
            decision=verb,
            task_update=task_update,
            document_update=DocumentUpdate(
                document_id=document.document_id,
                status=DocumentStatus.REJECTED,
            ),
            notifications=tuple(notifications),
        )

    upcoming = next_pending_task(
        (t for t in context.tasks if t.task_id != task.task_id),
        task.step,
    )

    if upcoming is None:
        # Skipping the last step leaves the document status as it was.
        document_update = DocumentUpdate(
            document_id=document.document_id,
            status=DocumentStatus.APPROVED if verb == Decision.COMPLETE else None,
            current_step=task.step + 1,
        )
        if verb == Decision.COMPLETE:
            notifications.append(AuthorNotification(
                document_id=document.document_id,
                author_id=document.author_id,
                status=DocumentStatus.APPROVED,
            ))
    else:
        document_update = DocumentUpdate(
            document_id=document.document_id,
            current_step=upcoming.step,
        )
        notifications.append(AssigneeNotification(
            document_id=document.document_id,
            assignee_id=upcoming.assignee_id,
            task_id=upcoming.task_id,
            step=upcoming.step,
        ))

    return DecisionPlan(
        decision=verb,
        task_update=task_update,
        document_update=document_update,
        notifications=tuple(notifications),
    )


def resulting_document_status(
    document_status: DocumentStatus,
    plan: DecisionPlan,
) -> DocumentStatus:
    """Document status after ``plan`` is applied."""
    return plan.document_update.status or document_status


def resulting_current_step(current_step: int, plan: DecisionPlan) -> int:
    """Document pointer after ``plan`` is applied."""
    if plan.document_update.current_step is None:
        return current_step
    return plan.document_update.current_step
