"""
Audit chain digests.

Two digests make up one chain link:

* ``payload_digest`` -- SHA-256 of the payload's canonical JSON (sorted
  keys, no whitespace, UTF-8).  Detects edits to the payload column.
* ``link_digest`` -- SHA-256 over the event's identifying fields, its
  payload digest and the previous link.  Detects edits to the row, to
  its position, and deletion or insertion of rows before it.

Both are pure functions of their inputs; re-running them over stored
rows during ``validate_chain()`` must reproduce the stored values.
"""

import hashlib
import json
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any

GENESIS = "GENESIS"


def _canonical_default(obj: Any) -> Any:
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    raise TypeError(f"{type(obj).__name__} has no canonical JSON form")


def canonical_json(data: Any) -> str:
    """Deterministic JSON text for ``data``.  Unsupported types raise TypeError."""
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_canonical_default,
    )


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def payload_digest(payload: dict[str, Any] | None) -> str:
    return _sha256(canonical_json(payload or {}))


@dataclass(frozen=True)
class AuditLink:
    """The fields of an audit event covered by its chain digest."""

    seq: int
    entity_type: str
    entity_id: str
    action: str
    actor_id: int
    payload_digest: str
    prev_hash: str | None

    def digest(self) -> str:
        return link_digest(self)


def link_digest(link: AuditLink) -> str:
    parts = (
        str(link.seq),
        link.entity_type,
        link.entity_id,
        link.action,
        str(link.actor_id),
        link.payload_digest,
        link.prev_hash or GENESIS,
    )
    return _sha256("|".join(parts))
