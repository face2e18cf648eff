"""
haccp_services.decision_orchestrator -- Transaction boundary for workflow writes.

Responsibility:
    Owns one database transaction per workflow write.  Inside it: refuse
    the write if audit mode is active, run the kernel service, record the
    audit event, commit.  After it: hand the notification intents to the
    dispatcher, inline or on a worker pool.

Architecture position:
    Services -- stateful orchestration over engines + kernel.  This is the
    only place that commits a task decision and the only place that calls
    the notification dispatcher for one.

Invariants enforced:
    - All-or-nothing: the task write, the document write and the audit
      event commit together or roll back together.
    - Audit mode: checked inside the transaction, before any mutation.
    - Commit before notify: no notification is sent for a decision that
      did not commit, and a failed notification never undoes one.
    - A losing concurrent decision fails with AlreadyDecidedError or
      NotYetActionableError, never with a silent overwrite.

Failure modes:
    - Every WorkflowDecisionError from WorkflowService propagates unchanged.
    - AuditModeActiveError while an audit session is open.
    - StorageFailureError for any database failure; nothing was written.

Audit relevance:
    Every committed decision and every created document has exactly one
    audit event, written in the same transaction.

Usage:
    orchestrator = DecisionOrchestrator(
        session_factory=get_session_factory(),
        dispatcher=TelegramNotificationDispatcher(token, base_url),
        clock=SystemClock(),
    )
    result = orchestrator.decide(actor_id, task_id, "complete", "ok")
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from concurrent.futures import Executor, Future

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from haccp_engines.approval_chain import validate_actor, validate_decision
from haccp_kernel.db.engine import session_scope
from haccp_kernel.domain.clock import Clock, SystemClock
from haccp_kernel.domain.workflow import (
    Decision,
    DecisionResult,
    DocumentCreated,
    DocumentSnapshot,
    NotificationIntent,
    Participant,
    StageSpec,
)
from haccp_kernel.exceptions import (
    AlreadyDecidedError,
    AuditModeActiveError,
    AuditSessionNotFoundError,
    CommentRequiredError,
    DocumentNotFoundError,
    DocumentValidationError,
    HaccpKernelError,
    InvalidActorError,
    InvalidDecisionError,
    InvalidUserError,
    NotAssigneeError,
    NotYetActionableError,
    OptimisticLockError,
    SkipNotAllowedError,
    StorageFailureError,
    TaskNotFoundError,
    UserNotFoundError,
    WorkflowDecisionError,
)
from haccp_kernel.logging_config import LogContext, get_logger
from haccp_kernel.models.user import UserModel
from haccp_kernel.services.audit_mode_service import AuditModeGate, AuditModeService
from haccp_kernel.services.auditor_service import AuditorService
from haccp_kernel.services.decision_store import DecisionStore
from haccp_kernel.services.document_service import DocumentService
from haccp_kernel.services.workflow_service import WorkflowService
from haccp_services.notifications import NotificationDispatcher

logger = get_logger("services.decision_orchestrator")

# Transport-layer mapping; the kernel itself never deals in status codes.
HTTP_STATUS_BY_ERROR: dict[str, int] = {
    TaskNotFoundError.code: 404,
    DocumentNotFoundError.code: 404,
    UserNotFoundError.code: 404,
    AuditSessionNotFoundError.code: 404,
    NotAssigneeError.code: 403,
    NotYetActionableError.code: 403,
    AuditModeActiveError.code: 403,
    AlreadyDecidedError.code: 400,
    SkipNotAllowedError.code: 400,
    CommentRequiredError.code: 400,
    InvalidDecisionError.code: 400,
    InvalidActorError.code: 400,
    DocumentValidationError.code: 400,
    InvalidUserError.code: 400,
    OptimisticLockError.code: 409,
    StorageFailureError.code: 503,
}


def http_status_for(exc: BaseException) -> int:
    """HTTP status a transport layer should answer ``exc`` with."""
    if isinstance(exc, HaccpKernelError):
        return HTTP_STATUS_BY_ERROR.get(exc.code, 500)
    return 500


StoreFactory = Callable[[Session, Clock], DecisionStore]


class DecisionOrchestrator:
    """Runs workflow writes in their own transaction and notifies afterwards.

    Contract:
        Receives a session factory, a notification dispatcher and a clock.
        Each call opens a fresh session; no session is shared across calls,
        so one orchestrator serves concurrent request threads.

    Non-goals:
        - Does NOT retry a decision.  StorageFailureError is returned to
          the caller, whose transport decides on retries.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        dispatcher: NotificationDispatcher,
        clock: Clock | None = None,
        audit_mode: AuditModeGate | None = None,
        executor: Executor | None = None,
        store_factory: StoreFactory | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        # None means: consult the audit_sessions table inside the transaction
        self._audit_mode = audit_mode
        self._executor = executor
        self._store_factory: StoreFactory = store_factory or DecisionStore
        self._pending: list[Future] = []
        self._pending_lock = threading.Lock()

    @property
    def dispatcher(self) -> NotificationDispatcher:
        return self._dispatcher

    def _gate(self, session: Session) -> AuditModeGate:
        if self._audit_mode is not None:
            return self._audit_mode
        return AuditModeService(session, self._clock)

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        actor_id: int,
        task_id: int,
        decision: Decision | str,
        comment: str | None = None,
    ) -> DecisionResult:
        """Record a decision, audit it, commit, then notify.

        Returns:
            DecisionResult of the committed decision.

        Raises:
            WorkflowDecisionError subclasses, AuditModeActiveError,
            StorageFailureError.
        """
        with LogContext.bind(actor_id=actor_id, task_id=task_id):
            try:
                with session_scope(self._session_factory) as session:
                    self._gate(session).ensure_writable("task.decide")
                    store = self._store_factory(session, self._clock)
                    workflow = WorkflowService(session, self._clock, store=store)
                    result, context = workflow.decide_in_context(
                        actor_id, task_id, decision, comment,
                    )
                    AuditorService(session, self._clock).record_task_decision(result)
            except OptimisticLockError as exc:
                raise self._lost_race_error(actor_id, task_id, decision, comment) from exc
            except SQLAlchemyError as exc:
                logger.error(
                    "decision_storage_failure",
                    extra={"task_id": task_id},
                    exc_info=True,
                )
                raise StorageFailureError("decide", str(exc)) from exc

            self._notify(result.notifications, context.document, context.participants)
            return result

    def _lost_race_error(
        self,
        actor_id: int,
        task_id: int,
        decision: Decision | str,
        comment: str | None,
    ) -> HaccpKernelError:
        """Re-validate against committed state after losing a concurrent write.

        Returns the refusal the decision gets now, or StorageFailureError
        if it would still pass.
        """
        logger.warning("decision_lost_race", extra={"task_id": task_id})
        try:
            with session_scope(self._session_factory) as session:
                store = self._store_factory(session, self._clock)
                context = store.load_decision_context(task_id, for_update=False)
                validate_decision(
                    context,
                    validate_actor(actor_id),
                    Decision.parse(decision),
                    comment,
                )
        except WorkflowDecisionError as refusal:
            logger.info(
                "decision_lost_race_refused",
                extra={"task_id": task_id, "error_code": refusal.code},
            )
            return refusal
        except SQLAlchemyError as exc:
            return StorageFailureError("decide", str(exc))
        return StorageFailureError("decide", "concurrent update; retry the decision")

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    def create_document(
        self,
        author_id: int,
        title: str,
        body: str,
        stages: list[StageSpec],
        recipient_id: int | None = None,
    ) -> DocumentCreated:
        """Create a document and its chain, audit it, commit, notify step 0."""
        with LogContext.bind(actor_id=author_id):
            try:
                with session_scope(self._session_factory) as session:
                    self._gate(session).ensure_writable("document.create")
                    created = DocumentService(session, self._clock).create_document(
                        author_id, title, body, stages, recipient_id=recipient_id,
                    )
                    AuditorService(session, self._clock).record_document_created(
                        created.document, author_id,
                    )
                    participants = self._participants(session, created.document)
            except SQLAlchemyError as exc:
                logger.error("document_storage_failure", exc_info=True)
                raise StorageFailureError("create_document", str(exc)) from exc

            self._notify(created.notifications, created.document, participants)
            return created

    @staticmethod
    def _participants(session: Session, document: DocumentSnapshot) -> tuple[Participant, ...]:
        ids = {document.author_id} | {t.assignee_id for t in document.tasks}
        return tuple(
            session.get(UserModel, user_id).to_participant() for user_id in sorted(ids)
        )

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def _notify(
        self,
        intents: tuple[NotificationIntent, ...],
        document: DocumentSnapshot,
        participants: tuple[Participant, ...],
    ) -> None:
        if not intents:
            return
        if self._executor is None:
            self._dispatcher.dispatch(intents, document, participants)
            return
        future = self._executor.submit(
            self._dispatcher.dispatch, intents, document, participants,
        )
        with self._pending_lock:
            self._pending = [f for f in self._pending if not f.done()]
            self._pending.append(future)

    def wait_for_notifications(self, timeout: float | None = None) -> None:
        """Block until detached notifications submitted so far have finished."""
        with self._pending_lock:
            pending, self._pending = self._pending, []
        for future in pending:
            future.result(timeout=timeout)
