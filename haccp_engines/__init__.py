"""
Module: haccp_engines
Responsibility:
    Package entrypoint that re-exports the public symbols of the pure
    calculation engines.  This is the canonical import surface for higher
    layers (haccp_kernel.services, haccp_services).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import haccp_kernel/domain and haccp_kernel/exceptions.
    MUST NOT import haccp_services or any database code.

Invariants enforced:
    - Purity: engines NEVER call ``datetime.now()``.  Timestamps are passed
      in as explicit parameters by the calling service.
    - Determinism: identical inputs always produce identical outputs.
"""

from haccp_engines.approval_chain import (
    next_pending_task,
    plan_decision,
    resulting_current_step,
    resulting_document_status,
    validate_actor,
    validate_decision,
)

__all__ = [
    "next_pending_task",
    "plan_decision",
    "resulting_current_step",
    "resulting_document_status",
    "validate_actor",
    "validate_decision",
]
