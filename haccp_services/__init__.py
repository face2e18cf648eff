"""
haccp_services -- orchestration above the kernel.

Owns transaction boundaries for workflow writes and post-commit
notification delivery.
"""

from haccp_services.decision_orchestrator import (
    HTTP_STATUS_BY_ERROR,
    DecisionOrchestrator,
    http_status_for,
)
from haccp_services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    RecordingNotificationDispatcher,
    SentNotification,
    TelegramNotificationDispatcher,
    build_dispatcher,
)

__all__ = [
    "HTTP_STATUS_BY_ERROR",
    "DecisionOrchestrator",
    "LoggingNotificationDispatcher",
    "NotificationDispatcher",
    "RecordingNotificationDispatcher",
    "SentNotification",
    "TelegramNotificationDispatcher",
    "build_dispatcher",
    "http_status_for",
]
