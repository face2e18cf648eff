"""Kernel services.  All of them flush; none of them commit."""

from haccp_kernel.services.audit_mode_service import (
    AuditModeGate,
    AuditModeService,
    StaticAuditMode,
)
from haccp_kernel.services.auditor_service import (
    AuditorService,
    AuditTrace,
    AuditTraceEntry,
)
from haccp_kernel.services.decision_store import DecisionStore
from haccp_kernel.services.document_service import DocumentService, UserService
from haccp_kernel.services.sequence_service import SequenceService
from haccp_kernel.services.workflow_service import WorkflowService

__all__ = [
    "AuditModeGate",
    "AuditModeService",
    "AuditTrace",
    "AuditTraceEntry",
    "AuditorService",
    "DecisionStore",
    "DocumentService",
    "SequenceService",
    "StaticAuditMode",
    "UserService",
    "WorkflowService",
]
