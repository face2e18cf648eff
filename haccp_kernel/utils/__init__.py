"""Utility modules for the HACCP kernel."""

from haccp_kernel.utils.hashing import (
    GENESIS,
    AuditLink,
    canonical_json,
    link_digest,
    payload_digest,
)

__all__ = [
    "GENESIS",
    "AuditLink",
    "canonical_json",
    "link_digest",
    "payload_digest",
]
