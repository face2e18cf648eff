"""
HACCP Kernel - document approval workflow

A transactional approval-chain kernel for food-safety documents with:
- Ordered, single-pointer task chains per document
- Atomic decisions with row locking and optimistic versioning
- Full auditability via hash chain
- Audit-mode write lock
"""

__version__ = "0.1.0"
