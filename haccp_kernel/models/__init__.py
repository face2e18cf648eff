"""Domain models for the HACCP kernel."""

from haccp_kernel.models.audit_event import AuditAction, AuditEvent
from haccp_kernel.models.audit_session import AuditSessionModel
from haccp_kernel.models.document import DocumentModel, TaskModel
from haccp_kernel.models.sequence_counter import SequenceCounter
from haccp_kernel.models.user import UserModel

__all__ = [
    "AuditAction",
    "AuditEvent",
    "AuditSessionModel",
    "DocumentModel",
    "SequenceCounter",
    "TaskModel",
    "UserModel",
]
