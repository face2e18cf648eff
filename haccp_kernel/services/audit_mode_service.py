"""
haccp_kernel.services.audit_mode_service -- Inspection ("audit mode") lock.

Responsibility:
    Opens and closes inspection sessions and answers whether workflow
    writes are currently allowed.  While a session is open every document
    creation and task decision is refused before it mutates anything.

Architecture position:
    Kernel > Services.  Flush-only.  Consumed by DecisionOrchestrator
    through the ``AuditModeGate`` protocol.

Invariants enforced:
    - At most one open session.  ``start_session`` refuses while one is open.
    - A refused write raises AuditModeActiveError before any row changes.

Failure modes:
    - AuditModeActiveError from ``ensure_writable`` or when starting a
      second session.
    - AuditSessionNotFoundError when ending an unknown or closed session.
    - UserNotFoundError when the auditor does not exist.
"""

from __future__ import annotations

from typing import Protocol

from sqlalchemy import select

from haccp_kernel.domain.workflow import AuditSessionInfo
from haccp_kernel.exceptions import (
    AuditModeActiveError,
    AuditSessionNotFoundError,
    UserNotFoundError,
)
from haccp_kernel.logging_config import get_logger
from haccp_kernel.models.audit_session import AuditSessionModel
from haccp_kernel.models.user import UserModel
from haccp_kernel.services.auditor_service import AuditorService
from haccp_kernel.services.base import BaseService

logger = get_logger("services.audit_mode")


class AuditModeGate(Protocol):
    """Anything that can refuse a workflow write."""

    def ensure_writable(self, operation: str) -> None:
        """Raise AuditModeActiveError if ``operation`` must be refused."""
        ...


class StaticAuditMode:
    """Gate for callers that already know whether audit mode is on."""

    def __init__(self, active: bool = False, audit_type: str | None = None):
        self.active = active
        self.audit_type = audit_type

    def ensure_writable(self, operation: str) -> None:
        if self.active:
            raise AuditModeActiveError(operation, audit_type=self.audit_type)


def _to_info(model: AuditSessionModel) -> AuditSessionInfo:
    return AuditSessionInfo(
        session_id=model.id,
        auditor_id=model.auditor_id,
        auditor_name=model.auditor_name,
        audit_type=model.audit_type,
        started_at=model.started_at,
        ended_at=model.ended_at,
    )


class AuditModeService(BaseService):
    """Database-backed audit mode: sessions live in ``audit_sessions``."""

    def _open_session_model(self, for_update: bool = False) -> AuditSessionModel | None:
        stmt = (
            select(AuditSessionModel)
            .where(AuditSessionModel.ended_at.is_(None))
            .order_by(AuditSessionModel.started_at.desc())
            .limit(1)
        )
        if for_update:
            stmt = stmt.with_for_update()
        return self.session.execute(stmt).scalar_one_or_none()

    def active_session(self) -> AuditSessionInfo | None:
        model = self._open_session_model()
        return _to_info(model) if model is not None else None

    def is_active(self) -> bool:
        return self._open_session_model() is not None

    def ensure_writable(self, operation: str) -> None:
        model = self._open_session_model()
        if model is not None:
            logger.warning(
                "write_blocked_by_audit_mode",
                extra={
                    "operation": operation,
                    "audit_session_id": model.id,
                    "audit_type": model.audit_type,
                },
            )
            raise AuditModeActiveError(operation, model.id, model.audit_type)

    def start_session(
        self,
        auditor_id: int,
        audit_type: str,
        auditor_name: str | None = None,
    ) -> AuditSessionInfo:
        """Open an inspection session; refuses if one is already open."""
        current = self._open_session_model(for_update=True)
        if current is not None:
            raise AuditModeActiveError(
                "audit_session.start", current.id, current.audit_type,
            )

        auditor = self.session.get(UserModel, auditor_id)
        if auditor is None:
            raise UserNotFoundError([auditor_id])

        model = AuditSessionModel(
            auditor_id=auditor_id,
            auditor_name=auditor_name or auditor.name,
            audit_type=audit_type,
            started_at=self.clock.now(),
        )
        self.session.add(model)
        self.session.flush()

        AuditorService(self.session, self.clock).record_audit_session_started(
            model.id, auditor_id, audit_type,
        )
        logger.info(
            "audit_session_started",
            extra={"audit_session_id": model.id, "audit_type": audit_type},
        )
        return _to_info(model)

    def end_session(self, session_id: int, actor_id: int) -> AuditSessionInfo:
        """Close an open inspection session."""
        model = self.session.execute(
            select(AuditSessionModel)
            .where(
                AuditSessionModel.id == session_id,
                AuditSessionModel.ended_at.is_(None),
            )
            .with_for_update()
        ).scalar_one_or_none()
        if model is None:
            raise AuditSessionNotFoundError(session_id)

        model.ended_at = self.clock.now()
        model.ended_by = actor_id
        self.session.flush()

        AuditorService(self.session, self.clock).record_audit_session_ended(
            session_id, actor_id,
        )
        logger.info("audit_session_ended", extra={"audit_session_id": session_id})
        return _to_info(model)
