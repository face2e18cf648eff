"""
Tests for the pure approval-chain engine.

Tests cover:
- validate_actor / Decision.parse: input validation before anything else
- validate_decision: the ordered legality checks, first failure wins
- plan_decision: reject, complete and skip branches and their intents
- next_pending_task: scan-based advance across gaps in step numbering
- Property tests over random chains and decision sequences
"""

from dataclasses import replace
from datetime import datetime, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from haccp_engines.approval_chain import (
    next_pending_task,
    plan_decision,
    resulting_current_step,
    resulting_document_status,
    validate_actor,
    validate_decision,
)
from haccp_kernel.domain.workflow import (
    TERMINAL_APPROVAL_STATUSES,
    AssigneeNotification,
    AuthorNotification,
    Decision,
    DecisionContext,
    DocumentSnapshot,
    DocumentStatus,
    TaskSnapshot,
    TaskStatus,
)
from haccp_kernel.exceptions import (
    AlreadyDecidedError,
    CommentRequiredError,
    InvalidActorError,
    InvalidDecisionError,
    NotAssigneeError,
    NotYetActionableError,
    SkipNotAllowedError,
    WorkflowDecisionError,
)

NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)
AUTHOR = 99


# =========================================================================
# Factory helpers
# =========================================================================


def make_task(
    task_id: int,
    step: int,
    assignee_id: int,
    status: TaskStatus = TaskStatus.PENDING,
    can_skip: bool = False,
    comment_required: bool = False,
) -> TaskSnapshot:
    return TaskSnapshot(
        task_id=task_id,
        document_id=1,
        step=step,
        assignee_id=assignee_id,
        status=status,
        can_skip=can_skip,
        comment_required=comment_required,
    )


def make_document(
    tasks: tuple[TaskSnapshot, ...],
    current_step: int = 0,
    status: DocumentStatus = DocumentStatus.IN_PROGRESS,
) -> DocumentSnapshot:
    return DocumentSnapshot(
        document_id=1,
        title="Cooling log",
        status=status,
        current_step=current_step,
        author_id=AUTHOR,
        tasks=tasks,
    )


def make_context(
    tasks: tuple[TaskSnapshot, ...],
    task_id: int,
    current_step: int = 0,
    status: DocumentStatus = DocumentStatus.IN_PROGRESS,
) -> DecisionContext:
    document = make_document(tasks, current_step, status)
    task = next(t for t in tasks if t.task_id == task_id)
    return DecisionContext(task=task, document=document, tasks=tasks)


def three_steps(**overrides) -> tuple[TaskSnapshot, ...]:
    return (
        make_task(1, 0, 11),
        make_task(2, 1, 12, **overrides),
        make_task(3, 2, 13),
    )


def apply_plan(document: DocumentSnapshot, plan) -> DocumentSnapshot:
    """Apply a plan to snapshots the way DecisionStore applies it to rows."""
    update = plan.task_update
    tasks = tuple(
        replace(t, status=update.status, comment=update.comment, completed_at=update.completed_at)
        if t.task_id == update.task_id else t
        for t in document.tasks
    )
    return replace(
        document,
        status=resulting_document_status(document.status, plan),
        current_step=resulting_current_step(document.current_step, plan),
        tasks=tasks,
    )


# =========================================================================
# Input validation
# =========================================================================


class TestInputValidation:

    @pytest.mark.parametrize("actor_id", [0, -4, True, "11", None, 1.5])
    def test_invalid_actor_rejected(self, actor_id):
        with pytest.raises(InvalidActorError):
            validate_actor(actor_id)

    def test_valid_actor_returned(self):
        assert validate_actor(11) == 11

    @pytest.mark.parametrize("value", ["approve", "COMPLETE", "", None, 1])
    def test_invalid_decision_rejected(self, value):
        with pytest.raises(InvalidDecisionError):
            Decision.parse(value)

    def test_decision_parse_accepts_strings_and_members(self):
        assert Decision.parse("skip") is Decision.SKIP
        assert Decision.parse(Decision.REJECT) is Decision.REJECT

    def test_invalid_actor_checked_before_assignment(self):
        """A malformed actor never reaches the assignee check."""
        context = make_context(three_steps(), task_id=2, current_step=0)
        with pytest.raises(InvalidActorError):
            plan_decision(context, -1, "complete", None, NOW)

    def test_invalid_decision_checked_before_assignment(self):
        context = make_context(three_steps(), task_id=2, current_step=0)
        with pytest.raises(InvalidDecisionError):
            plan_decision(context, 999, "approve", None, NOW)


# =========================================================================
# Ordered validation
# =========================================================================


class TestValidationOrder:

    def test_not_assignee_wins_over_not_yet_actionable(self):
        context = make_context(three_steps(), task_id=2, current_step=0)
        with pytest.raises(NotAssigneeError) as exc_info:
            validate_decision(context, 11, Decision.COMPLETE, None)
        assert exc_info.value.assignee_id == 12

    def test_not_yet_actionable_for_future_step(self):
        context = make_context(three_steps(), task_id=2, current_step=0)
        with pytest.raises(NotYetActionableError) as exc_info:
            validate_decision(context, 12, Decision.COMPLETE, None)
        assert exc_info.value.task_step == 1
        assert exc_info.value.current_step == 0

    def test_not_yet_actionable_wins_over_already_decided(self):
        tasks = (make_task(1, 0, 11, status=TaskStatus.APPROVED), make_task(2, 1, 12))
        context = make_context(tasks, task_id=1, current_step=1)
        with pytest.raises(NotYetActionableError):
            validate_decision(context, 11, Decision.COMPLETE, None)

    def test_already_decided_on_current_step(self):
        tasks = (make_task(1, 0, 11, status=TaskStatus.REJECTED), make_task(2, 1, 12))
        context = make_context(tasks, task_id=1, current_step=0, status=DocumentStatus.REJECTED)
        with pytest.raises(AlreadyDecidedError) as exc_info:
            validate_decision(context, 11, Decision.REJECT, None)
        assert exc_info.value.status == "rejected"

    def test_terminal_document_refuses_pending_task(self):
        tasks = (make_task(1, 0, 11),)
        context = make_context(tasks, task_id=1, current_step=0, status=DocumentStatus.APPROVED)
        with pytest.raises(AlreadyDecidedError):
            validate_decision(context, 11, Decision.COMPLETE, None)

    def test_already_decided_wins_over_skip_not_allowed(self):
        tasks = (make_task(1, 0, 11, status=TaskStatus.REJECTED),)
        context = make_context(tasks, task_id=1, current_step=0)
        with pytest.raises(AlreadyDecidedError):
            validate_decision(context, 11, Decision.SKIP, None)

    def test_skip_not_allowed(self):
        context = make_context(three_steps(), task_id=1, current_step=0)
        with pytest.raises(SkipNotAllowedError):
            validate_decision(context, 11, Decision.SKIP, None)

    @pytest.mark.parametrize("comment", [None, "", "   ", "\n\t"])
    def test_comment_required_for_complete(self, comment):
        tasks = (make_task(1, 0, 11, comment_required=True),)
        context = make_context(tasks, task_id=1)
        with pytest.raises(CommentRequiredError):
            validate_decision(context, 11, Decision.COMPLETE, comment)

    def test_comment_required_does_not_apply_to_reject(self):
        tasks = (make_task(1, 0, 11, comment_required=True),)
        context = make_context(tasks, task_id=1)
        validate_decision(context, 11, Decision.REJECT, None)

    def test_comment_required_does_not_apply_to_skip(self):
        tasks = (make_task(1, 0, 11, comment_required=True, can_skip=True),)
        context = make_context(tasks, task_id=1)
        validate_decision(context, 11, Decision.SKIP, "")


# =========================================================================
# Planning
# =========================================================================


class TestPlanDecision:

    def test_complete_advances_to_next_step(self):
        context = make_context(three_steps(), task_id=1)
        plan = plan_decision(context, 11, "complete", "checked", NOW)

        assert plan.task_update.status == TaskStatus.APPROVED
        assert plan.task_update.comment == "checked"
        assert plan.task_update.completed_at == NOW
        assert plan.document_update.status is None
        assert plan.document_update.current_step == 1
        assert plan.notifications == (
            AssigneeNotification(document_id=1, assignee_id=12, task_id=2, step=1),
        )

    def test_complete_last_step_approves(self):
        tasks = (
            make_task(1, 0, 11, status=TaskStatus.APPROVED),
            make_task(2, 1, 12),
        )
        context = make_context(tasks, task_id=2, current_step=1)
        plan = plan_decision(context, 12, "complete", "ok", NOW)

        assert plan.document_update.status == DocumentStatus.APPROVED
        assert plan.document_update.current_step == 2
        assert plan.notifications == (
            AuthorNotification(document_id=1, author_id=AUTHOR, status=DocumentStatus.APPROVED),
        )

    def test_reject_keeps_pointer_and_notifies_author(self):
        context = make_context(three_steps(), task_id=1)
        plan = plan_decision(context, 11, "reject", "missing data", NOW)

        assert plan.task_update.status == TaskStatus.REJECTED
        assert plan.document_update.status == DocumentStatus.REJECTED
        assert plan.document_update.current_step is None
        assert resulting_current_step(0, plan) == 0
        assert plan.notifications == (
            AuthorNotification(
                document_id=1,
                author_id=AUTHOR,
                status=DocumentStatus.REJECTED,
                comment="missing data",
            ),
        )

    def test_skip_middle_step_advances(self):
        tasks = three_steps(can_skip=True)
        context = make_context(tasks, task_id=2, current_step=1)
        plan = plan_decision(context, 12, "skip", None, NOW)

        assert plan.task_update.status == TaskStatus.SKIPPED
        assert plan.document_update.current_step == 2
        assert isinstance(plan.notifications[0], AssigneeNotification)
        assert plan.notifications[0].assignee_id == 13

    def test_skip_last_step_does_not_approve(self):
        tasks = (make_task(1, 0, 11, can_skip=True),)
        context = make_context(tasks, task_id=1)
        plan = plan_decision(context, 11, "skip", None, NOW)

        assert plan.document_update.status is None
        assert plan.document_update.current_step == 1
        assert plan.notifications == ()
        assert resulting_document_status(DocumentStatus.IN_PROGRESS, plan) == DocumentStatus.IN_PROGRESS

    def test_empty_comment_stored_as_none(self):
        context = make_context(three_steps(), task_id=1)
        plan = plan_decision(context, 11, "complete", "", NOW)
        assert plan.task_update.comment is None

    def test_comment_stored_verbatim(self):
        tasks = (make_task(1, 0, 11, comment_required=True),)
        context = make_context(tasks, task_id=1)
        plan = plan_decision(context, 11, "complete", "  t=3.8C  ", NOW)
        assert plan.task_update.comment == "  t=3.8C  "

    def test_pointer_jumps_over_gap(self):
        tasks = (make_task(1, 0, 11), make_task(2, 4, 12), make_task(3, 9, 13))
        context = make_context(tasks, task_id=1)
        plan = plan_decision(context, 11, "complete", None, NOW)

        assert plan.document_update.current_step == 4
        assert plan.notifications[0].task_id == 2

    def test_last_step_after_gap_points_past_it(self):
        tasks = (
            make_task(1, 0, 11, status=TaskStatus.APPROVED),
            make_task(2, 5, 12),
        )
        context = make_context(tasks, task_id=2, current_step=5)
        plan = plan_decision(context, 12, "complete", None, NOW)
        assert plan.document_update.current_step == 6


class TestNextPendingTask:

    def test_first_pending_after_step(self):
        tasks = [make_task(3, 7, 13), make_task(1, 0, 11), make_task(2, 3, 12)]
        assert next_pending_task(tasks, 0).task_id == 2

    def test_non_pending_tasks_passed_over(self):
        tasks = [
            make_task(1, 0, 11),
            make_task(2, 1, 12, status=TaskStatus.SKIPPED),
            make_task(3, 2, 13),
        ]
        assert next_pending_task(tasks, 0).task_id == 3

    def test_none_when_chain_exhausted(self):
        assert next_pending_task([make_task(1, 0, 11)], 0) is None


# =========================================================================
# Properties
# =========================================================================


@st.composite
def chains(draw) -> tuple[TaskSnapshot, ...]:
    size = draw(st.integers(min_value=1, max_value=6))
    steps = sorted(draw(st.sets(st.integers(0, 20), min_size=size, max_size=size)))
    return tuple(
        make_task(
            task_id=i + 1,
            step=step,
            assignee_id=100 + i,
            can_skip=draw(st.booleans()),
            comment_required=draw(st.booleans()),
        )
        for i, step in enumerate(steps)
    )


operations = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=5),
        st.sampled_from(list(Decision)),
        st.sampled_from([None, "", "ok"]),
    ),
    max_size=15,
)


class TestChainProperties:

    @settings(max_examples=200)
    @given(tasks=chains(), ops=operations)
    def test_decision_sequences_respect_chain_invariants(self, tasks, ops):
        document = make_document(tasks, current_step=tasks[0].step)

        for index, decision, comment in ops:
            task = document.tasks[index % len(document.tasks)]
            context = DecisionContext(task=task, document=document, tasks=document.tasks)
            before = document

            try:
                plan = plan_decision(context, task.assignee_id, decision, comment, NOW)
            except WorkflowDecisionError as exc:
                # Single actionable step
                if task.step != document.current_step:
                    assert isinstance(exc, NotYetActionableError)
                # Terminal one-shot
                elif not task.is_pending:
                    assert isinstance(exc, AlreadyDecidedError)
                continue

            assert task.is_pending
            assert task.step == before.current_step
            assert before.status not in TERMINAL_APPROVAL_STATUSES

            document = apply_plan(document, plan)
            assert document.current_step >= before.current_step

            if decision == Decision.REJECT:
                # Reject short-circuits
                assert document.status == DocumentStatus.REJECTED
                assert document.current_step == task.step
                assert all(t == b for t, b in zip(document.tasks, before.tasks) if t.step > task.step)

            pending_here = [
                t for t in document.tasks
                if t.is_pending and t.step == document.current_step
            ]
            assert len(pending_here) <= 1

    @settings(max_examples=100)
    @given(
        tasks=chains(),
        index=st.integers(min_value=0, max_value=5),
        decision=st.sampled_from(list(Decision)),
        stranger=st.integers(min_value=1, max_value=99),
    )
    def test_non_assignee_always_refused(self, tasks, index, decision, stranger):
        task = tasks[index % len(tasks)]
        context = DecisionContext(
            task=task,
            document=make_document(tasks, current_step=task.step),
            tasks=tasks,
        )
        with pytest.raises(NotAssigneeError):
            plan_decision(context, stranger, decision, "ok", NOW)
