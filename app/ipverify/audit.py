"""
Audit trail for state changes: submissions, review decisions, evidence removal, ledger pruning.

Events are added to the caller's session, so an operation that rolls back leaves no event.
"""

import json
import logging
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.ipverify.models import AuditEvent

logger = logging.getLogger(__name__)

ACTOR_PUBLIC = "public"
ACTOR_ADMIN = "admin"
ACTOR_SCRIPT = "script"

# Width of audit_events.reason; longer free text (e.g. review notes) is cut to fit.
REASON_MAX_LENGTH = 512

AUDITED_ACTIONS = frozenset(
    {
        "status.submit",
        "status.decide",
        "status.attachment_removed",
        "ledger.prune",
    }
)


def _request_context() -> tuple[str | None, str | None, str | None]:
    """(request_id, actor, client_ip) of the current request, or Nones outside one (scripts)."""
    if not has_request_context():
        return None, None, None
    return getattr(g, "request_id", None), getattr(g, "actor", None), request.remote_addr


def record_event(
    s: Session,
    *,
    action: str,
    actor: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    if action not in AUDITED_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")

    rid, request_actor, client_ip = _request_context()
    ev = AuditEvent(
        request_id=request_id or rid,
        actor=actor or request_actor or ACTOR_PUBLIC,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        reason=(reason or "")[:REASON_MAX_LENGTH] or None,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=client_ip,
    )
    s.add(ev)
    logger.debug("audit: %s %s/%s actor=%s", action, entity_type, entity_id, ev.actor)
    return ev
