"""
Typed Exception Hierarchy for the HACCP Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every refused workflow action must be reported precisely: the transport
layer maps it to a status code, the UI to a message, the audit log to a
machine-readable reason.  Parsing message strings for that is fragile.

Every exception therefore:
  1. Has its own class (catch by type, not message)
  2. Carries a CODE class attribute (machine-readable, API-safe)
  3. Stores its context as attributes (not just a message string)

Example - WRONG way to handle errors:
    try:
        orchestrator.decide(actor_id, task_id, "complete", "")
    except Exception as e:
        if "comment" in str(e):  # FRAGILE - message might change
            ask_for_comment()

Example - RIGHT way:
    try:
        orchestrator.decide(actor_id, task_id, "complete", "")
    except CommentRequiredError as e:
        ask_for_comment(task_id=e.task_id)
    except WorkflowDecisionError as e:
        api_response(code=e.code, status=HTTP_STATUS_BY_ERROR[e.code])

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from HaccpKernelError:

    HaccpKernelError (base)
    |
    +-- WorkflowDecisionError
    |   +-- TaskNotFoundError
    |   +-- NotAssigneeError
    |   +-- NotYetActionableError
    |   +-- AlreadyDecidedError
    |   +-- SkipNotAllowedError
    |   +-- CommentRequiredError
    |   +-- InvalidDecisionError
    |   +-- InvalidActorError
    |
    +-- DocumentError
    |   +-- DocumentNotFoundError
    |   +-- DocumentValidationError
    |   +-- UserNotFoundError
    |   +-- InvalidUserError
    |
    +-- StorageError
    |   +-- StorageFailureError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |   +-- AuditModeActiveError
    |   +-- AuditSessionNotFoundError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Decision        | TASK_NOT_FOUND              | Task ID doesn't exist
                | NOT_ASSIGNEE                | Actor is not the task's assignee
                | NOT_YET_ACTIONABLE          | Task step != document current step
                | ALREADY_DECIDED             | Task is no longer pending
                | SKIP_NOT_ALLOWED            | Skip requested, task cannot be skipped
                | COMMENT_REQUIRED            | Complete without a required comment
                | INVALID_DECISION            | Not one of complete / reject / skip
                | INVALID_ACTOR               | Actor id is not a positive integer
----------------|-----------------------------|-----------------------------------------
Document        | DOCUMENT_NOT_FOUND          | Document ID doesn't exist
                | DOCUMENT_VALIDATION_FAILED  | Bad title, empty chain, bad action
                | USER_NOT_FOUND              | Referenced user doesn't exist
                | INVALID_USER                | Blank user name or bad chat id
----------------|-----------------------------|-----------------------------------------
Storage         | STORAGE_FAILURE             | Transaction could not commit (retry)
----------------|-----------------------------|-----------------------------------------
Concurrency     | OPTIMISTIC_LOCK_CONFLICT    | Row changed by a concurrent transaction
----------------|-----------------------------|-----------------------------------------
Audit           | AUDIT_CHAIN_BROKEN          | Audit hash chain validation failed
                | AUDIT_MODE_ACTIVE           | Write refused during an audit session
                | AUDIT_SESSION_NOT_FOUND     | Audit session ID doesn't exist / ended
----------------|-----------------------------|-----------------------------------------
Immutability    | IMMUTABILITY_VIOLATION      | Modifying an append-only record
----------------|-----------------------------|-----------------------------------------
Config          | CONFIG_ERROR                | Malformed configuration value

===============================================================================
DESIGN DECISIONS
===============================================================================

1. WHY INHERIT FROM Exception (not ValueError, etc.)?
   Domain exceptions should be catchable as a group. Inheriting from
   built-in types mixes domain errors with programming errors.

2. WHY code CLASS ATTRIBUTE (not instance)?
   Codes are static per exception type, so ``NotAssigneeError.code``
   works without an instance (status-code tables, API docs).

3. WHY SEPARATE ERROR CATEGORIES?
   Enables middleware to handle categories differently:
   - WorkflowDecisionError -> 4xx, user-facing message
   - StorageError -> 503, caller may retry
   - ConcurrencyError -> internal, re-validated by the orchestrator

===============================================================================
"""


class HaccpKernelError(Exception):
    """
    Base exception for all HACCP kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "HACCP_KERNEL_ERROR"


# Workflow decision exceptions


class WorkflowDecisionError(HaccpKernelError):
    """Base exception for refused task decisions."""

    code: str = "WORKFLOW_DECISION_ERROR"


class TaskNotFoundError(WorkflowDecisionError):
    """Task with given ID was not found."""

    code: str = "TASK_NOT_FOUND"

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class NotAssigneeError(WorkflowDecisionError):
    """The acting user is not the task's assignee."""

    code: str = "NOT_ASSIGNEE"

    def __init__(self, task_id: int, actor_id: int, assignee_id: int):
        self.task_id = task_id
        self.actor_id = actor_id
        self.assignee_id = assignee_id
        super().__init__(
            f"User {actor_id} is not assigned to task {task_id}"
        )


class NotYetActionableError(WorkflowDecisionError):
    """
    The task's step is not the document's current step.

    Either an earlier step is still pending or this step already passed.
    """

    code: str = "NOT_YET_ACTIONABLE"

    def __init__(self, task_id: int, task_step: int, current_step: int):
        self.task_id = task_id
        self.task_step = task_step
        self.current_step = current_step
        super().__init__(
            f"Task {task_id} is at step {task_step}, "
            f"document is at step {current_step}"
        )


class AlreadyDecidedError(WorkflowDecisionError):
    """The task is no longer pending."""

    code: str = "ALREADY_DECIDED"

    def __init__(self, task_id: int, status: str):
        self.task_id = task_id
        self.status = status
        super().__init__(f"Task {task_id} already decided: {status}")


class SkipNotAllowedError(WorkflowDecisionError):
    """Skip was requested for a task that cannot be skipped."""

    code: str = "SKIP_NOT_ALLOWED"

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} cannot be skipped")


class CommentRequiredError(WorkflowDecisionError):
    """Completing this task requires a non-blank comment."""

    code: str = "COMMENT_REQUIRED"

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task {task_id} requires a comment")


class InvalidDecisionError(WorkflowDecisionError):
    """Decision value is not one of complete / reject / skip."""

    code: str = "INVALID_DECISION"

    def __init__(self, decision: object):
        self.decision = decision
        super().__init__(f"Invalid decision: {decision!r}")


class InvalidActorError(WorkflowDecisionError):
    """Actor identity is not a positive integer."""

    code: str = "INVALID_ACTOR"

    def __init__(self, actor_id: object):
        self.actor_id = actor_id
        super().__init__(f"Invalid actor id: {actor_id!r}")


# Document-related exceptions


class DocumentError(HaccpKernelError):
    """Base exception for document-related errors."""

    code: str = "DOCUMENT_ERROR"


class DocumentNotFoundError(DocumentError):
    """Document with given ID was not found."""

    code: str = "DOCUMENT_NOT_FOUND"

    def __init__(self, document_id: int):
        self.document_id = document_id
        super().__init__(f"Document not found: {document_id}")


class DocumentValidationError(DocumentError):
    """Document creation input is invalid."""

    code: str = "DOCUMENT_VALIDATION_FAILED"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid document {field}: {reason}")


class UserNotFoundError(DocumentError):
    """One or more referenced users do not exist."""

    code: str = "USER_NOT_FOUND"

    def __init__(self, user_ids: list[int]):
        self.user_ids = sorted(user_ids)
        super().__init__(
            "Users not found: " + ", ".join(str(u) for u in self.user_ids)
        )


class InvalidUserError(DocumentError):
    """User master data is invalid."""

    code: str = "INVALID_USER"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid user {field}: {reason}")


# Storage exceptions


class StorageError(HaccpKernelError):
    """Base exception for storage-layer failures."""

    code: str = "STORAGE_ERROR"


class StorageFailureError(StorageError):
    """
    The underlying transaction could not commit.

    Transient infrastructure fault.  No partial mutation occurred; the
    caller may retry.
    """

    code: str = "STORAGE_FAILURE"

    def __init__(self, operation: str, reason: str):
        self.operation = operation
        self.reason = reason
        super().__init__(f"Storage failure during {operation}: {reason}")


# Concurrency-related exceptions


class ConcurrencyError(HaccpKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Audit-related exceptions


class AuditError(HaccpKernelError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """
    Audit hash chain validation failed.

    Indicates potential tampering with audit records.
    """

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: int, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at event {audit_event_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )


class AuditModeActiveError(AuditError):
    """A write was refused because an audit session is active."""

    code: str = "AUDIT_MODE_ACTIVE"

    def __init__(self, operation: str, audit_session_id: int | None = None,
                 audit_type: str | None = None):
        self.operation = operation
        self.audit_session_id = audit_session_id
        self.audit_type = audit_type
        super().__init__(
            f"Operation '{operation}' blocked: audit mode is active"
            + (f" ({audit_type})" if audit_type else "")
        )


class AuditSessionNotFoundError(AuditError):
    """Audit session does not exist or is not active."""

    code: str = "AUDIT_SESSION_NOT_FOUND"

    def __init__(self, audit_session_id: int):
        self.audit_session_id = audit_session_id
        super().__init__(f"Active audit session not found: {audit_session_id}")


# Immutability-related exceptions


class ImmutabilityError(HaccpKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigError(HaccpKernelError):
    """A configuration value is missing or malformed."""

    code: str = "CONFIG_ERROR"

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Invalid configuration {key}: {reason}")
