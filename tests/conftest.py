"""
Pytest fixtures for the HACCP workflow test suite.

Provides:
- A file-backed SQLite database per test (engine, session factory, session)
- Deterministic clock
- Captured structured logs
- User and document factories
- A DecisionOrchestrator wired to a RecordingNotificationDispatcher

Each test gets its own database file under ``tmp_path``, so tests never
share rows and need no cleanup beyond disposing the engine.
"""

import json
import logging
from dataclasses import dataclass
from io import StringIO

import pytest

from haccp_kernel.db.engine import (
    create_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
    session_scope,
)
from haccp_kernel.domain.clock import DeterministicClock
from haccp_kernel.domain.workflow import DocumentSnapshot, Participant, StageSpec
from haccp_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from haccp_kernel.services.document_service import DocumentService, UserService
from haccp_kernel.services.sequence_service import SequenceService
from haccp_services.decision_orchestrator import DecisionOrchestrator
from haccp_services.notifications import RecordingNotificationDispatcher


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture haccp_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, orchestrator):
            orchestrator.decide(...)
            logs = captured_logs()
            assert any(r["message"] == "task_decision_recorded" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("haccp_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def database_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'haccp_test.db'}"


@pytest.fixture
def engine(database_url):
    engine = init_engine_from_url(database_url, pool_timeout=5)
    create_tables()
    with session_scope() as session:
        SequenceService(session).initialize_sequences()
    yield engine
    reset_engine()


@pytest.fixture
def session_factory(engine):
    return get_session_factory()


@pytest.fixture
def session(session_factory):
    """
    A session for service-level tests.  Never committed.

    Tests that also commit through ``session_scope`` (the factories below,
    the orchestrator) must do so before writing through this session.
    """
    session = session_factory()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock()


# =============================================================================
# Factories (each call commits in its own transaction)
# =============================================================================


@pytest.fixture
def make_user(session_factory, deterministic_clock):
    def _make(
        name: str = "Employee",
        role: str = "employee",
        telegram_chat_id: int | None = None,
    ) -> Participant:
        with session_scope(session_factory) as session:
            return UserService(session, deterministic_clock).create_user(
                name, role=role, telegram_chat_id=telegram_chat_id,
            )

    return _make


@dataclass(frozen=True)
class Staff:
    author: Participant
    first: Participant
    second: Participant
    third: Participant


@pytest.fixture
def staff(make_user) -> Staff:
    return Staff(
        author=make_user("Olga Author", role="technologist", telegram_chat_id=1001),
        first=make_user("Ivan Reviewer", telegram_chat_id=1002),
        second=make_user("Maria Approver", telegram_chat_id=1003),
        third=make_user("Pavel Signer"),
    )


@pytest.fixture
def make_document(session_factory, deterministic_clock):
    """Create a committed document directly, bypassing the orchestrator."""

    def _make(
        author_id: int,
        stages: list[StageSpec],
        title: str = "Cooling log review",
        body: str = "Chiller 2 readings for week 14",
        recipient_id: int | None = None,
    ) -> DocumentSnapshot:
        with session_scope(session_factory) as session:
            created = DocumentService(session, deterministic_clock).create_document(
                author_id, title, body, stages, recipient_id=recipient_id,
            )
        return created.document

    return _make


@pytest.fixture
def two_step_document(staff, make_document) -> DocumentSnapshot:
    """Step 0: review by ``first``; step 1: approve by ``second``."""
    return make_document(
        staff.author.user_id,
        [
            StageSpec(assignee_id=staff.first.user_id, action="review"),
            StageSpec(assignee_id=staff.second.user_id, action="approve"),
        ],
    )


@pytest.fixture
def three_step_document(staff, make_document) -> DocumentSnapshot:
    return make_document(
        staff.author.user_id,
        [
            StageSpec(assignee_id=staff.first.user_id, action="review"),
            StageSpec(assignee_id=staff.second.user_id, action="approve"),
            StageSpec(assignee_id=staff.third.user_id, action="sign"),
        ],
    )


# =============================================================================
# Orchestration
# =============================================================================


@pytest.fixture
def dispatcher() -> RecordingNotificationDispatcher:
    return RecordingNotificationDispatcher()


@pytest.fixture
def orchestrator(session_factory, dispatcher, deterministic_clock) -> DecisionOrchestrator:
    return DecisionOrchestrator(
        session_factory=session_factory,
        dispatcher=dispatcher,
        clock=deterministic_clock,
    )
