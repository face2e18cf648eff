"""
Pure domain layer.

This module contains pure data transfer objects with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock abstraction itself)
- I/O

All domain objects are immutable and deterministic.
"""

from haccp_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from haccp_kernel.domain.workflow import (
    ACTION_LABELS,
    DECISION_TASK_STATUS,
    TASK_TRANSITIONS,
    TERMINAL_APPROVAL_STATUSES,
    AssigneeNotification,
    AuditSessionInfo,
    AuthorNotification,
    Decision,
    DecisionContext,
    DecisionPlan,
    DecisionResult,
    DocumentCreated,
    DocumentSnapshot,
    DocumentStatus,
    DocumentUpdate,
    NotificationIntent,
    Participant,
    StageSpec,
    TaskAction,
    TaskSnapshot,
    TaskStatus,
    TaskUpdate,
)

__all__ = [
    # Clock
    "Clock",
    "DeterministicClock",
    "SystemClock",
    # Status vocabularies
    "DocumentStatus",
    "TaskStatus",
    "TaskAction",
    "Decision",
    "ACTION_LABELS",
    "DECISION_TASK_STATUS",
    "TASK_TRANSITIONS",
    "TERMINAL_APPROVAL_STATUSES",
    # Snapshots
    "DocumentSnapshot",
    "TaskSnapshot",
    "Participant",
    "DecisionContext",
    # Creation
    "StageSpec",
    "DocumentCreated",
    # Audit mode
    "AuditSessionInfo",
    # Plan / result
    "TaskUpdate",
    "DocumentUpdate",
    "DecisionPlan",
    "DecisionResult",
    # Notification intents
    "AuthorNotification",
    "AssigneeNotification",
    "NotificationIntent",
]
