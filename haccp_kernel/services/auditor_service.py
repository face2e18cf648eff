"""
AuditorService -- tamper-evident audit trail and hash chain maintenance.

Responsibility:
    Creates immutable, hash-chained audit events for every workflow write:
    document creation, task decisions, audit session start and end.
    Provides chain validation for tamper detection and trace queries for
    inspections.

Architecture position:
    Kernel > Services -- imperative shell, called by DecisionOrchestrator
    and AuditModeService inside the same transaction as the write it
    records.

Invariants enforced:
    - Audit chain integrity: ``hash = H(seq | entity_type | entity_id |
      action | actor_id | payload_hash | prev_hash)``.  Every event links to
      its predecessor.
    - Append-only: audit events are never modified or deleted (ORM
      listeners on the AuditEvent model).
    - seq comes from the ``audit_event`` counter row (SequenceService),
      never from ``max(seq) + 1``.  The chain head is read only after that
      row is locked, so concurrent writers link one after another.

Failure modes:
    - AuditChainBrokenError: a recomputed hash does not match the stored
      one, or prev_hash does not match the predecessor's hash.
    - Concurrent writers wait on the counter row lock; none of them fails
      because another one recorded first.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from haccp_kernel.domain.clock import Clock, SystemClock
from haccp_kernel.domain.workflow import (
    Decision,
    DecisionResult,
    DocumentSnapshot,
)
from haccp_kernel.exceptions import AuditChainBrokenError
from haccp_kernel.logging_config import get_logger
from haccp_kernel.models.audit_event import AuditAction, AuditEvent
from haccp_kernel.services.sequence_service import SequenceService
from haccp_kernel.utils.hashing import AuditLink, payload_digest

logger = get_logger("services.auditor")

_DECISION_ACTIONS: dict[Decision, AuditAction] = {
    Decision.COMPLETE: AuditAction.TASK_COMPLETED,
    Decision.REJECT: AuditAction.TASK_REJECTED,
    Decision.SKIP: AuditAction.TASK_SKIPPED,
}


@dataclass(frozen=True)
class AuditTraceEntry:
    """A single entry in an audit trace."""

    seq: int
    action: AuditAction
    occurred_at: datetime
    actor_id: int
    payload: dict[str, Any]
    hash: str


@dataclass(frozen=True)
class AuditTrace:
    """
    Complete audit trace for an entity.

    Contains all audit events in chronological order.
    """

    entity_type: str
    entity_id: str
    entries: tuple[AuditTraceEntry, ...]

    @property
    def is_empty(self) -> bool:
        return len(self.entries) == 0

    @property
    def first_action(self) -> AuditAction | None:
        return self.entries[0].action if self.entries else None

    @property
    def last_action(self) -> AuditAction | None:
        return self.entries[-1].action if self.entries else None


class AuditorService:
    """
    Service for creating and validating tamper-evident audit events.

    Guarantees:
        - Every audit event's ``hash`` is a deterministic function of
          ``(seq, entity_type, entity_id, action, actor_id, payload_hash,
          prev_hash)``.
          Tampering with any field is detectable by ``validate_chain()``.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
    ):
        """
        Args:
            session: SQLAlchemy session.
            clock: Clock for timestamps. Defaults to SystemClock.
        """
        self._session = session
        self._clock = clock or SystemClock()

    def _get_last_event(self) -> AuditEvent | None:
        return self._session.execute(
            select(AuditEvent)
            .order_by(AuditEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _create_audit_event(
        self,
        entity_type: str,
        entity_id: int | str,
        action: AuditAction,
        actor_id: int,
        payload: dict[str, Any] | None = None,
        audit_session_id: int | None = None,
    ) -> AuditEvent:
        """
        Create a new audit event with hash chain linkage.

        Public callers should use the domain-specific ``record_*`` methods.

        Postconditions:
            - A new ``AuditEvent`` row is flushed to the session with the
              next ``seq`` and a valid hash chain link.
        """
        # Lock first: the head read below must see every earlier allocation
        seq = SequenceService(self._session).next_value(SequenceService.AUDIT_EVENT)
        last = self._get_last_event()
        prev_hash = last.hash if last else None

        payload_data = payload or {}
        computed_payload_hash = payload_digest(payload_data)

        event_hash = AuditLink(
            seq=seq,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor_id=actor_id,
            payload_digest=computed_payload_hash,
            prev_hash=prev_hash,
        ).digest()

        audit_event = AuditEvent(
            seq=seq,
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action.value,
            actor_id=actor_id,
            audit_session_id=audit_session_id,
            occurred_at=self._clock.now(),
            payload=payload_data,
            payload_hash=computed_payload_hash,
            prev_hash=prev_hash,
            hash=event_hash,
        )

        self._session.add(audit_event)
        self._session.flush()

        logger.info(
            "audit_event_created",
            extra={
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action.value,
                "seq": seq,
            },
        )

        return audit_event

    # Domain-specific recording methods

    def record_task_decision(
        self,
        result: DecisionResult,
        audit_session_id: int | None = None,
    ) -> AuditEvent:
        """Record a committed task decision.

        ``result`` carries everything needed; nothing is re-read.
        """
        return self._create_audit_event(
            entity_type="Task",
            entity_id=result.task_id,
            action=_DECISION_ACTIONS[result.decision],
            actor_id=result.actor_id,
            audit_session_id=audit_session_id,
            payload={
                "document_id": result.document_id,
                "decision": result.decision.value,
                "task_status": result.task_status.value,
                "document_status": result.document_status.value,
                "current_step": result.current_step,
                "comment": result.comment,
                "completed_at": result.completed_at.isoformat(),
            },
        )

    def record_document_created(
        self,
        document: DocumentSnapshot,
        actor_id: int,
        audit_session_id: int | None = None,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="Document",
            entity_id=document.document_id,
            action=AuditAction.DOCUMENT_CREATED,
            actor_id=actor_id,
            audit_session_id=audit_session_id,
            payload={
                "title": document.title,
                "recipient_id": document.recipient_id,
                "steps": [
                    {
                        "step": t.step,
                        "assignee_id": t.assignee_id,
                        "action": t.action.value,
                        "can_skip": t.can_skip,
                        "comment_required": t.comment_required,
                    }
                    for t in document.tasks
                ],
            },
        )

    def record_audit_session_started(
        self,
        session_id: int,
        auditor_id: int,
        audit_type: str,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="AuditSession",
            entity_id=session_id,
            action=AuditAction.AUDIT_SESSION_STARTED,
            actor_id=auditor_id,
            audit_session_id=session_id,
            payload={"audit_type": audit_type},
        )

    def record_audit_session_ended(
        self,
        session_id: int,
        actor_id: int,
    ) -> AuditEvent:
        return self._create_audit_event(
            entity_type="AuditSession",
            entity_id=session_id,
            action=AuditAction.AUDIT_SESSION_ENDED,
            actor_id=actor_id,
            audit_session_id=session_id,
        )

    # Verification and queries

    def validate_chain(self) -> bool:
        """
        Validate the entire audit chain.

        Postconditions:
            - Returns ``True`` only if every event's payload still hashes to
              its ``payload_hash``, every stored ``hash`` matches the
              recomputed value, and every ``prev_hash`` matches its
              predecessor's ``hash``.

        Raises:
            AuditChainBrokenError: If chain validation fails at any point.
        """
        events = self._session.execute(
            select(AuditEvent).order_by(AuditEvent.seq)
        ).scalars().all()

        if not events:
            return True

        if events[0].prev_hash is not None:
            logger.critical("audit_chain_broken", extra={"seq": events[0].seq})
            raise AuditChainBrokenError(events[0].id, "None", events[0].prev_hash)

        for i, event in enumerate(events):
            payload_hash = payload_digest(event.payload)
            if payload_hash != event.payload_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(event.id, event.payload_hash, payload_hash)

            expected_hash = AuditLink(
                seq=event.seq,
                entity_type=event.entity_type,
                entity_id=event.entity_id,
                action=event.action,
                actor_id=event.actor_id,
                payload_digest=event.payload_hash,
                prev_hash=event.prev_hash,
            ).digest()
            if event.hash != expected_hash:
                logger.critical("audit_chain_broken", extra={"seq": event.seq})
                raise AuditChainBrokenError(event.id, expected_hash, event.hash)

            if i > 0:
                expected_prev = events[i - 1].hash
                if event.prev_hash != expected_prev:
                    logger.critical("audit_chain_broken", extra={"seq": event.seq})
                    raise AuditChainBrokenError(
                        event.id, expected_prev, event.prev_hash or "None",
                    )

        logger.info("audit_chain_validated", extra={"events": len(events)})
        return True

    def get_trace(self, entity_type: str, entity_id: int | str) -> AuditTrace:
        """All audit events for one entity, oldest first."""
        events = self._session.execute(
            select(AuditEvent)
            .where(
                AuditEvent.entity_type == entity_type,
                AuditEvent.entity_id == str(entity_id),
            )
            .order_by(AuditEvent.seq)
        ).scalars().all()

        return AuditTrace(
            entity_type=entity_type,
            entity_id=str(entity_id),
            entries=tuple(
                AuditTraceEntry(
                    seq=e.seq,
                    action=AuditAction(e.action),
                    occurred_at=e.occurred_at,
                    actor_id=e.actor_id,
                    payload=e.payload or {},
                    hash=e.hash,
                )
                for e in events
            ),
        )

    def count_events(self) -> int:
        return self._session.execute(
            select(func.count()).select_from(AuditEvent)
        ).scalar_one()
