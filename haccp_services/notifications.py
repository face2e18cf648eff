"""
haccp_services.notifications -- Post-commit notification delivery.

Responsibility:
    Turns the notification intents produced by a committed decision (or a
    new document) into messages for the people involved: the assignee
    whose task just became actionable, or the author of a document that
    reached a final approval outcome.

Architecture position:
    Services.  Runs strictly after the workflow transaction commits.
    Never touches the database.

Invariants enforced:
    - Best effort: ``dispatch()`` catches and logs every delivery failure.
      A failed or skipped notification never reaches the caller of
      ``decide`` and never changes workflow state.
    - Recipients without a Telegram chat, or a missing bot token, are
      skipped with a debug log line.

Failure modes:
    - None propagate from ``dispatch()``.  Individual failures are logged
      as ``notification_dispatch_failed`` with the exception attached.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass

import httpx

from haccp_config.schema import NotificationConfig
from haccp_kernel.domain.workflow import (
    AssigneeNotification,
    AuthorNotification,
    DocumentSnapshot,
    DocumentStatus,
    NotificationIntent,
    Participant,
    TaskSnapshot,
    action_label,
)
from haccp_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


class NotificationDispatcher:
    """Base dispatcher: resolves recipients and isolates delivery failures.

    Subclasses implement ``notify_assignee`` and ``notify_author``; they
    may raise freely.
    """

    def notify_assignee(
        self,
        user: Participant,
        document: DocumentSnapshot,
        task: TaskSnapshot,
    ) -> None:
        raise NotImplementedError

    def notify_author(
        self,
        user: Participant,
        document: DocumentSnapshot,
        status: DocumentStatus,
        comment: str | None = None,
    ) -> None:
        raise NotImplementedError

    def dispatch(
        self,
        intents: Iterable[NotificationIntent],
        document: DocumentSnapshot,
        participants: Iterable[Participant],
    ) -> int:
        """Deliver every intent; return how many were handed off successfully."""
        people = {p.user_id: p for p in participants}
        delivered = 0

        for intent in intents:
            recipient_id = (
                intent.assignee_id
                if isinstance(intent, AssigneeNotification)
                else intent.author_id
            )
            user = people.get(recipient_id)
            if user is None:
                logger.warning(
                    "notification_recipient_unknown",
                    extra={"document_id": document.document_id, "user_id": recipient_id},
                )
                continue

            try:
                if isinstance(intent, AssigneeNotification):
                    task = document.task_at_step(intent.step) or TaskSnapshot(
                        task_id=intent.task_id,
                        document_id=intent.document_id,
                        step=intent.step,
                        assignee_id=intent.assignee_id,
                    )
                    self.notify_assignee(user, document, task)
                else:
                    self.notify_author(user, document, intent.status, intent.comment)
                delivered += 1
            except Exception:
                logger.error(
                    "notification_dispatch_failed",
                    extra={
                        "document_id": document.document_id,
                        "user_id": recipient_id,
                        "intent": type(intent).__name__,
                    },
                    exc_info=True,
                )

        return delivered

    def close(self) -> None:
        """Release any held resources."""


# ---------------------------------------------------------------------------
# Telegram
# ---------------------------------------------------------------------------

STATUS_LABELS: dict[DocumentStatus, str] = {
    DocumentStatus.APPROVED: "✅ Approved",
    DocumentStatus.REJECTED: "❌ Rejected",
    DocumentStatus.IN_PROGRESS: "⏳ In approval",
}


def render_task_message(document: DocumentSnapshot, task: TaskSnapshot, base_url: str) -> str:
    url = f"{base_url}/documents/{document.document_id}"
    label = action_label(task.action).label
    return (
        "\U0001f4c4 *New task*\n\n"
        f"*Document:* {document.title}\n"
        f"*Step:* {task.step + 1}\n"
        f"*Action:* {label}\n\n"
        f"[Open document]({url})"
    )


def render_status_message(
    document: DocumentSnapshot,
    status: DocumentStatus,
    comment: str | None,
) -> str:
    message = (
        "\U0001f4cb *Document update*\n\n"
        f"*Title:* {document.title}\n"
        f"*Status:* {STATUS_LABELS.get(status, status.value)}"
    )
    if comment:
        message += f"\n*Comment:* {comment}"
    return message


class TelegramNotificationDispatcher(NotificationDispatcher):
    """Sends Markdown messages through the Telegram Bot API ``sendMessage``."""

    def __init__(
        self,
        bot_token: str | None,
        base_url: str = "http://localhost:3000",
        api_base: str = "https://api.telegram.org",
        timeout: float = 10.0,
    ):
        self._bot_token = bot_token
        self.base_url = base_url.rstrip("/")
        self.api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._client: httpx.Client | None = None
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return bool(self._bot_token)

    @property
    def client(self) -> httpx.Client:
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(
                    base_url=f"{self.api_base}/bot{self._bot_token}",
                    timeout=self._timeout,
                )
            return self._client

    def close(self) -> None:
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def _send(self, user: Participant, text: str) -> bool:
        if not self.enabled or user.telegram_chat_id is None:
            logger.debug(
                "notification_skipped",
                extra={
                    "user_id": user.user_id,
                    "reason": "no_bot_token" if not self.enabled else "no_chat_id",
                },
            )
            return False

        response = self.client.post(
            "/sendMessage",
            json={
                "chat_id": str(user.telegram_chat_id),
                "text": text,
                "parse_mode": "Markdown",
            },
        )
        response.raise_for_status()
        logger.info("telegram_message_sent", extra={"user_id": user.user_id})
        return True

    def notify_assignee(self, user, document, task) -> None:
        self._send(user, render_task_message(document, task, self.base_url))

    def notify_author(self, user, document, status, comment=None) -> None:
        self._send(user, render_status_message(document, status, comment))


# ---------------------------------------------------------------------------
# In-process dispatchers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SentNotification:
    """One notification as seen by RecordingNotificationDispatcher."""

    kind: str  # "assignee" or "author"
    user_id: int
    document_id: int
    task_id: int | None = None
    step: int | None = None
    status: DocumentStatus | None = None
    comment: str | None = None


class RecordingNotificationDispatcher(NotificationDispatcher):
    """Keeps every delivered notification in memory."""

    def __init__(self) -> None:
        self._sent: list[SentNotification] = []
        self._lock = threading.Lock()

    @property
    def sent(self) -> list[SentNotification]:
        with self._lock:
            return list(self._sent)

    def clear(self) -> None:
        with self._lock:
            self._sent.clear()

    def notify_assignee(self, user, document, task) -> None:
        with self._lock:
            self._sent.append(SentNotification(
                kind="assignee",
                user_id=user.user_id,
                document_id=document.document_id,
                task_id=task.task_id,
                step=task.step,
            ))

    def notify_author(self, user, document, status, comment=None) -> None:
        with self._lock:
            self._sent.append(SentNotification(
                kind="author",
                user_id=user.user_id,
                document_id=document.document_id,
                status=status,
                comment=comment,
            ))


class LoggingNotificationDispatcher(NotificationDispatcher):
    """Writes each notification as a structured log line instead of sending it."""

    def notify_assignee(self, user, document, task) -> None:
        logger.info(
            "notification_task_assigned",
            extra={
                "user_id": user.user_id,
                "document_id": document.document_id,
                "task_id": task.task_id,
                "step": task.step,
            },
        )

    def notify_author(self, user, document, status, comment=None) -> None:
        logger.info(
            "notification_document_status",
            extra={
                "user_id": user.user_id,
                "document_id": document.document_id,
                "status": status.value,
                "comment": comment,
            },
        )


def build_dispatcher(config: NotificationConfig) -> NotificationDispatcher:
    """Dispatcher for the configured backend."""
    if config.backend == "telegram":
        return TelegramNotificationDispatcher(
            bot_token=config.telegram.bot_token,
            base_url=config.base_url,
            api_base=config.telegram.api_base,
            timeout=config.telegram.timeout_seconds,
        )
    if config.backend == "recording":
        return RecordingNotificationDispatcher()
    return LoggingNotificationDispatcher()
