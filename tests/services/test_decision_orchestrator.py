"""
Decision orchestrator tests.

Verifies:
- Decisions commit together with their audit event and notify afterwards
- Notification failures never reach the caller or undo a decision
- Detached notification delivery on an executor
- A decision that loses a concurrent race is refused, never applied
- Concurrent decisions on different documents both commit, one chain
- Database failures surface as StorageFailureError with nothing written
- Transport status mapping for every error code
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from haccp_kernel.db.engine import session_scope
from haccp_kernel.domain.workflow import DocumentStatus, StageSpec, TaskStatus
from haccp_kernel.exceptions import (
    AlreadyDecidedError,
    AuditModeActiveError,
    CommentRequiredError,
    ConfigError,
    DocumentValidationError,
    HaccpKernelError,
    InvalidActorError,
    NotAssigneeError,
    NotYetActionableError,
    OptimisticLockError,
    StorageFailureError,
    TaskNotFoundError,
    WorkflowDecisionError,
)
from haccp_kernel.models.audit_event import AuditEvent
from haccp_kernel.services.auditor_service import AuditorService
from haccp_kernel.services.decision_store import DecisionStore
from haccp_kernel.services.document_service import DocumentService
from haccp_services.decision_orchestrator import (
    HTTP_STATUS_BY_ERROR,
    DecisionOrchestrator,
    http_status_for,
)
from haccp_services.notifications import (
    RecordingNotificationDispatcher,
    SentNotification,
)


def _stored(session_factory, document_id):
    with session_scope(session_factory) as session:
        return DocumentService(session).get_document(document_id)


def _event_count(session_factory) -> int:
    with session_scope(session_factory) as session:
        return AuditorService(session).count_events()


class TestDecide:

    def test_full_flow_notifies_in_order(self, orchestrator, dispatcher, staff):
        created = orchestrator.create_document(
            staff.author.user_id,
            "Supplier approval",
            "Dairy supplier audit",
            [
                StageSpec(staff.first.user_id, action="review"),
                StageSpec(staff.second.user_id, action="sign"),
            ],
        )
        doc = created.document
        orchestrator.decide(staff.first.user_id, doc.tasks[0].task_id, "complete", "")
        result = orchestrator.decide(staff.second.user_id, doc.tasks[1].task_id, "complete", "ok")

        assert result.document_status == DocumentStatus.APPROVED
        assert dispatcher.sent == [
            SentNotification(
                kind="assignee",
                user_id=staff.first.user_id,
                document_id=doc.document_id,
                task_id=doc.tasks[0].task_id,
                step=0,
            ),
            SentNotification(
                kind="assignee",
                user_id=staff.second.user_id,
                document_id=doc.document_id,
                task_id=doc.tasks[1].task_id,
                step=1,
            ),
            SentNotification(
                kind="author",
                user_id=staff.author.user_id,
                document_id=doc.document_id,
                status=DocumentStatus.APPROVED,
            ),
        ]

    def test_rejection_notifies_author_with_comment(
        self, orchestrator, dispatcher, session_factory, staff, two_step_document,
    ):
        doc = two_step_document
        orchestrator.decide(staff.first.user_id, doc.tasks[0].task_id, "complete")
        dispatcher.clear()

        orchestrator.decide(staff.second.user_id, doc.tasks[1].task_id, "reject", "missing data")

        assert dispatcher.sent == [
            SentNotification(
                kind="author",
                user_id=staff.author.user_id,
                document_id=doc.document_id,
                status=DocumentStatus.REJECTED,
                comment="missing data",
            ),
        ]
        stored = _stored(session_factory, doc.document_id)
        assert stored.status == DocumentStatus.REJECTED
        assert stored.tasks[1].status == TaskStatus.REJECTED
        assert stored.tasks[1].comment == "missing data"

    def test_decision_and_audit_committed_together(
        self, orchestrator, session_factory, staff, two_step_document,
    ):
        orchestrator.decide(staff.first.user_id, two_step_document.tasks[0].task_id, "complete")

        assert _stored(session_factory, two_step_document.document_id).current_step == 1
        assert _event_count(session_factory) == 1

    @pytest.mark.parametrize(
        ("actor", "decision", "comment", "error"),
        [
            (-1, "complete", None, InvalidActorError),
            ("second", "complete", None, NotAssigneeError),
            ("first", "approve", None, WorkflowDecisionError),
        ],
    )
    def test_refusals_write_and_send_nothing(
        self, orchestrator, dispatcher, session_factory, staff, two_step_document,
        actor, decision, comment, error,
    ):
        actor_id = getattr(staff, actor).user_id if isinstance(actor, str) else actor

        with pytest.raises(error):
            orchestrator.decide(actor_id, two_step_document.tasks[0].task_id, decision, comment)

        assert _stored(session_factory, two_step_document.document_id) == two_step_document
        assert _event_count(session_factory) == 0
        assert dispatcher.sent == []

    def test_unknown_task(self, orchestrator, staff):
        with pytest.raises(TaskNotFoundError):
            orchestrator.decide(staff.first.user_id, 999_999, "complete")


class TestCreateDocument:

    def test_created_audited_and_first_assignee_notified(
        self, orchestrator, dispatcher, session_factory, staff,
    ):
        created = orchestrator.create_document(
            staff.author.user_id,
            "Glass breakage procedure",
            "",
            [StageSpec(staff.second.user_id)],
            recipient_id=staff.third.user_id,
        )

        assert created.document.recipient_id == staff.third.user_id
        assert [n.user_id for n in dispatcher.sent] == [staff.second.user_id]
        assert _event_count(session_factory) == 1

    def test_invalid_document_writes_nothing(self, orchestrator, dispatcher, session_factory, staff):
        with pytest.raises(DocumentValidationError):
            orchestrator.create_document(staff.author.user_id, "Hi", "", [StageSpec(staff.first.user_id)])
        assert _event_count(session_factory) == 0
        assert dispatcher.sent == []


class ExplodingDispatcher(RecordingNotificationDispatcher):
    def notify_assignee(self, user, document, task) -> None:
        raise RuntimeError("telegram unreachable")


class TestNotificationIsolation:

    def test_failed_notification_does_not_fail_decision(
        self, session_factory, deterministic_clock, staff, two_step_document, captured_logs,
    ):
        orchestrator = DecisionOrchestrator(
            session_factory, ExplodingDispatcher(), clock=deterministic_clock,
        )

        result = orchestrator.decide(
            staff.first.user_id, two_step_document.tasks[0].task_id, "complete",
        )

        assert result.current_step == 1
        assert _stored(session_factory, two_step_document.document_id).current_step == 1
        failures = [r for r in captured_logs() if r["message"] == "notification_dispatch_failed"]
        assert len(failures) == 1
        assert failures[0]["user_id"] == staff.second.user_id
        assert failures[0]["exc_type"] == "RuntimeError"

    def test_detached_dispatch_on_executor(
        self, session_factory, dispatcher, deterministic_clock, staff, two_step_document,
    ):
        with ThreadPoolExecutor(max_workers=2) as executor:
            orchestrator = DecisionOrchestrator(
                session_factory, dispatcher, clock=deterministic_clock, executor=executor,
            )
            orchestrator.decide(staff.first.user_id, two_step_document.tasks[0].task_id, "complete")
            orchestrator.wait_for_notifications(timeout=10)

        assert [(n.kind, n.user_id) for n in dispatcher.sent] == [
            ("assignee", staff.second.user_id),
        ]


# =========================================================================
# Concurrency
# =========================================================================


class InterleavingStore(DecisionStore):
    """Runs a competing decision right after the context has been read.

    The competitor commits in its own session, so the decision in flight
    goes on to write against a snapshot that is already stale.
    """

    def __init__(self, session, clock, competitors: list):
        super().__init__(session, clock)
        self._competitors = competitors

    def load_decision_context(self, task_id, for_update=True):
        context = super().load_decision_context(task_id, for_update)
        if for_update and self._competitors:
            self._competitors.pop()()
        return context


def _interleaved(session_factory, clock, competitor) -> DecisionOrchestrator:
    competitors = [competitor]
    return DecisionOrchestrator(
        session_factory,
        RecordingNotificationDispatcher(),
        clock=clock,
        store_factory=lambda session, c: InterleavingStore(session, c, competitors),
    )


class TestLostRace:

    def test_loser_after_competing_complete_is_not_yet_actionable(
        self, session_factory, deterministic_clock, staff, two_step_document, captured_logs,
    ):
        task_id = two_step_document.tasks[0].task_id
        rival = DecisionOrchestrator(
            session_factory, RecordingNotificationDispatcher(), clock=deterministic_clock,
        )
        loser = _interleaved(
            session_factory,
            deterministic_clock,
            lambda: rival.decide(staff.first.user_id, task_id, "complete", "winner"),
        )

        with pytest.raises(NotYetActionableError) as exc_info:
            loser.decide(staff.first.user_id, task_id, "reject", "loser")
        assert isinstance(exc_info.value.__cause__, OptimisticLockError)

        stored = _stored(session_factory, two_step_document.document_id)
        assert stored.status == DocumentStatus.IN_PROGRESS
        assert stored.current_step == 1
        assert stored.tasks[0].comment == "winner"
        assert _event_count(session_factory) == 1
        assert loser.dispatcher.sent == []
        assert [n.user_id for n in rival.dispatcher.sent] == [staff.second.user_id]

        messages = [r["message"] for r in captured_logs()]
        assert "decision_version_conflict" in messages
        assert "decision_lost_race_refused" in messages

    def test_loser_after_competing_reject_is_already_decided(
        self, session_factory, deterministic_clock, staff, two_step_document,
    ):
        task_id = two_step_document.tasks[0].task_id
        rival = DecisionOrchestrator(
            session_factory, RecordingNotificationDispatcher(), clock=deterministic_clock,
        )
        loser = _interleaved(
            session_factory,
            deterministic_clock,
            lambda: rival.decide(staff.first.user_id, task_id, "reject", "contaminated"),
        )

        with pytest.raises(AlreadyDecidedError):
            loser.decide(staff.first.user_id, task_id, "complete")

        stored = _stored(session_factory, two_step_document.document_id)
        assert stored.status == DocumentStatus.REJECTED
        assert stored.current_step == 0
        assert stored.tasks[0].status == TaskStatus.REJECTED
        assert stored.tasks[0].comment == "contaminated"
        assert _event_count(session_factory) == 1


class BarrierStore(DecisionStore):
    """Holds each decision after its context read until every party has read."""

    def __init__(self, session, clock, barrier):
        super().__init__(session, clock)
        self._barrier = barrier

    def load_decision_context(self, task_id, for_update=True):
        context = super().load_decision_context(task_id, for_update)
        if for_update:
            self._barrier.wait()
        return context


@pytest.fixture
def independent_documents(staff, make_document):
    """Two unrelated documents, each waiting on ``first`` then ``second``."""
    return [
        make_document(
            staff.author.user_id,
            [
                StageSpec(assignee_id=staff.first.user_id, action="review"),
                StageSpec(assignee_id=staff.second.user_id, action="approve"),
            ],
            title=title,
        )
        for title in ("Cooling log, line 1", "Cooling log, line 2")
    ]


def _decide_together(orchestrator, actor_id, documents):
    with ThreadPoolExecutor(max_workers=len(documents)) as pool:
        futures = [
            pool.submit(orchestrator.decide, actor_id, doc.tasks[0].task_id, "complete")
            for doc in documents
        ]
        return [f.result(timeout=30) for f in futures]


class TestIndependentDocuments:

    def test_concurrent_decisions_both_commit(
        self, session_factory, dispatcher, deterministic_clock, staff, independent_documents,
    ):
        barrier = threading.Barrier(len(independent_documents), timeout=10)
        orchestrator = DecisionOrchestrator(
            session_factory,
            dispatcher,
            clock=deterministic_clock,
            store_factory=lambda session, clock: BarrierStore(session, clock, barrier),
        )

        results = _decide_together(orchestrator, staff.first.user_id, independent_documents)

        assert [r.current_step for r in results] == [1, 1]
        for doc in independent_documents:
            assert _stored(session_factory, doc.document_id).current_step == 1

        with session_scope(session_factory) as session:
            events = session.execute(select(AuditEvent).order_by(AuditEvent.seq)).scalars().all()
            assert [e.seq for e in events] == [1, 2]
            assert events[0].is_genesis
            assert events[1].prev_hash == events[0].hash
            assert {e.entity_id for e in events} == {
                str(doc.tasks[0].task_id) for doc in independent_documents
            }
            assert AuditorService(session).validate_chain() is True

        assert [n.user_id for n in dispatcher.sent] == [staff.second.user_id] * 2

    def test_detached_notifications_all_awaited(
        self, session_factory, dispatcher, deterministic_clock, staff, independent_documents,
    ):
        with ThreadPoolExecutor(max_workers=2) as executor:
            orchestrator = DecisionOrchestrator(
                session_factory, dispatcher, clock=deterministic_clock, executor=executor,
            )
            _decide_together(orchestrator, staff.first.user_id, independent_documents)
            orchestrator.wait_for_notifications(timeout=10)

            assert [(n.kind, n.user_id) for n in dispatcher.sent] == [
                ("assignee", staff.second.user_id),
            ] * 2


# =========================================================================
# Storage failures
# =========================================================================


class FailingStore(DecisionStore):
    """Writes the decision, then loses the connection before commit."""

    def commit_decision(self, plan) -> None:
        super().commit_decision(plan)
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))


class TestStorageFailure:

    def test_failure_after_write_rolls_back(
        self, session_factory, dispatcher, deterministic_clock, staff, two_step_document,
        captured_logs,
    ):
        orchestrator = DecisionOrchestrator(
            session_factory, dispatcher, clock=deterministic_clock, store_factory=FailingStore,
        )

        with pytest.raises(StorageFailureError) as exc_info:
            orchestrator.decide(staff.first.user_id, two_step_document.tasks[0].task_id, "complete")
        assert exc_info.value.operation == "decide"

        assert _stored(session_factory, two_step_document.document_id) == two_step_document
        assert _event_count(session_factory) == 0
        assert dispatcher.sent == []
        assert any(r["message"] == "decision_storage_failure" for r in captured_logs())


# =========================================================================
# Transport mapping
# =========================================================================


def _all_subclasses(cls):
    for sub in cls.__subclasses__():
        yield sub
        yield from _all_subclasses(sub)


class TestHttpStatus:

    @pytest.mark.parametrize(
        ("error", "status"),
        [
            (TaskNotFoundError(1), 404),
            (NotAssigneeError(1, 2, 3), 403),
            (NotYetActionableError(1, 2, 0), 403),
            (AuditModeActiveError("task.decide"), 403),
            (AlreadyDecidedError(1, "approved"), 400),
            (CommentRequiredError(1), 400),
            (OptimisticLockError("Task", "1"), 409),
            (StorageFailureError("decide", "timeout"), 503),
            (ConfigError("database.url", "empty"), 500),
            (ValueError("not ours"), 500),
        ],
    )
    def test_status_for(self, error, status):
        assert http_status_for(error) == status

    def test_every_decision_error_is_mapped(self):
        for cls in _all_subclasses(WorkflowDecisionError):
            assert cls.code in HTTP_STATUS_BY_ERROR, cls.__name__

    def test_only_kernel_codes_mapped(self):
        codes = {cls.code for cls in _all_subclasses(HaccpKernelError)}
        assert set(HTTP_STATUS_BY_ERROR) <= codes
