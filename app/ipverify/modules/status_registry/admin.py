"""
Status Registry admin endpoints (token-protected).

- decide: approve/reject a Pending request (audited)
- remove an evidence image: registry reference first, then the stored binary
- stats / pending queue for the reviewer dashboard
"""

from __future__ import annotations

from flask import Blueprint, current_app, request

from app.ipverify.audit import ACTOR_ADMIN, record_event
from app.ipverify.db import db_session, run_with_retry, transaction
from app.ipverify.modules.status_registry import service
from app.ipverify.rbac import require_admin
from app.ipverify.responses import ok

bp = Blueprint("status_registry_admin", __name__)


def _json() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


@bp.post("/decide")
@require_admin
def decide():
    data = _json()
    s = db_session()
    with transaction(s):
        rec = service.decide(s, data.get("ip"), data.get("status"), data.get("notes"))
        record_event(
            s,
            actor=ACTOR_ADMIN,
            action="status.decide",
            entity_type="StatusRecord",
            entity_id=rec.identity,
            reason=rec.review_notes,
            metadata={"status": rec.status},
        )
        body = {
            "ip": rec.identity,
            "status": rec.status,
            "encrypted": rec.is_verified,
            "message": f"Encryption status for {rec.identity} updated to {rec.status}",
        }
    return ok(body)


@bp.delete("/images/<ip>/<attachment_id>/<which>")
@require_admin
def delete_image(ip: str, attachment_id: str, which: str):
    s = db_session()
    with transaction(s):
        removed = service.remove_attachment(s, ip, attachment_id, which)
        remote_id = removed.remote_id
        record_event(
            s,
            actor=ACTOR_ADMIN,
            action="status.attachment_removed",
            entity_type="StatusAttachment",
            entity_id=str(removed.id),
            metadata={"ip": ip, "kind": removed.kind, "remote_id": remote_id},
        )

    # Reference is gone; an orphaned blob is preferable to a dangling reference.
    storage_deleted = True
    try:
        current_app.extensions["attachment_storage"].delete(remote_id)
    except Exception as e:
        storage_deleted = False
        current_app.logger.error("Stored image %s could not be deleted: %s", remote_id, e)

    return ok({"deleted": int(attachment_id), "storage_deleted": storage_deleted, "message": "Image deleted successfully"})


@bp.get("/stats")
@require_admin
def stats():
    return ok(run_with_retry(current_app._get_current_object(), service.registry_stats))


@bp.get("/pending-requests")
@require_admin
def pending_requests():
    def _pending(s):
        return [service.serialize_record(r) for r in service.list_pending(s)]

    requests_ = run_with_retry(current_app._get_current_object(), _pending)
    return ok({"count": len(requests_), "requests": requests_})
