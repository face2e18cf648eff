"""
haccp_kernel.services.workflow_service -- Task decision recording.

Responsibility:
    Records one assignee decision (complete / reject / skip) on one task
    and advances or terminates the document's approval chain.  Delegates
    legality checks and the resulting writes to the pure approval-chain
    engine; owns only loading, applying and logging.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the pure
    engines.  Flush-only: the caller owns the transaction.

Invariants enforced:
    - Single writer: this is the only code path that changes
      ``Document.current_step`` or ``Document.status`` during approval.
    - Atomicity: the task write and the document write are flushed
      together, inside the caller's transaction, against row-locked data.
    - Validation before mutation: any refused decision leaves the session
      untouched.

Failure modes:
    - InvalidActorError, InvalidDecisionError on malformed input (checked
      before the task is read).
    - TaskNotFoundError, NotAssigneeError, NotYetActionableError,
      AlreadyDecidedError, SkipNotAllowedError, CommentRequiredError.
    - OptimisticLockError, StorageFailureError from the decision store.
"""

from __future__ import annotations

from haccp_engines.approval_chain import (
    plan_decision,
    resulting_current_step,
    resulting_document_status,
    validate_actor,
)
from haccp_kernel.domain.clock import Clock
from haccp_kernel.domain.workflow import (
    Decision,
    DecisionContext,
    DecisionResult,
)
from haccp_kernel.exceptions import WorkflowDecisionError
from haccp_kernel.logging_config import LogContext, get_logger
from haccp_kernel.services.base import BaseService
from haccp_kernel.services.decision_store import DecisionStore

logger = get_logger("services.workflow")


class WorkflowService(BaseService):
    """
    Applies assignee decisions to approval chains.

    Contract:
        ``decide()`` either flushes exactly one task transition plus the
        matching document update and returns the DecisionResult, or raises
        without having written anything.

    Non-goals:
        - Does NOT commit, audit, check audit mode or send notifications;
          DecisionOrchestrator wraps those around this service.
    """

    def __init__(
        self,
        session,
        clock: Clock | None = None,
        store: DecisionStore | None = None,
    ):
        super().__init__(session, clock)
        self._store = store or DecisionStore(session, self.clock)

    @property
    def store(self) -> DecisionStore:
        return self._store

    def decide(
        self,
        actor_id: int,
        task_id: int,
        decision: Decision | str,
        comment: str | None = None,
    ) -> DecisionResult:
        """Record ``decision`` by ``actor_id`` on ``task_id``."""
        result, _ = self.decide_in_context(actor_id, task_id, decision, comment)
        return result

    def decide_in_context(
        self,
        actor_id: int,
        task_id: int,
        decision: Decision | str,
        comment: str | None = None,
    ) -> tuple[DecisionResult, DecisionContext]:
        """Like ``decide()``, also returning the context it was validated against.

        The context carries the participants the notification dispatcher
        needs, so no second read is required after commit.
        """
        with LogContext.bind(actor_id=actor_id, task_id=task_id):
            try:
                actor = validate_actor(actor_id)
                verb = Decision.parse(decision)
                context = self._store.load_decision_context(task_id, for_update=True)
                plan = plan_decision(context, actor, verb, comment, self.clock.now())
            except WorkflowDecisionError as exc:
                logger.warning(
                    "task_decision_refused",
                    extra={
                        "task_id": task_id,
                        "actor_id": actor_id,
                        "decision": getattr(decision, "value", decision),
                        "error_code": exc.code,
                    },
                )
                raise

            self._store.commit_decision(plan)

            document = context.document
            result = DecisionResult(
                actor_id=actor,
                task_id=context.task.task_id,
                document_id=document.document_id,
                decision=verb,
                task_status=plan.task_update.status,
                document_status=resulting_document_status(document.status, plan),
                current_step=resulting_current_step(document.current_step, plan),
                completed_at=plan.task_update.completed_at,
                comment=plan.task_update.comment,
                notifications=plan.notifications,
            )

            logger.info(
                "task_decision_recorded",
                extra={
                    "task_id": result.task_id,
                    "document_id": result.document_id,
                    "decision": verb.value,
                    "task_status": result.task_status.value,
                    "document_status": result.document_status.value,
                    "current_step": result.current_step,
                },
            )
            return result, context
