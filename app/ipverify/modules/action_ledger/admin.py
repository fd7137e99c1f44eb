from __future__ import annotations

from flask import Blueprint, current_app, request

from app.ipverify.audit import ACTOR_ADMIN, record_event
from app.ipverify.db import db_session, run_with_retry, transaction
from app.ipverify.errors import ValidationError
from app.ipverify.modules.action_ledger import service
from app.ipverify.rbac import require_admin
from app.ipverify.responses import ok

bp = Blueprint("action_ledger_admin", __name__)


def _parse_days(raw, default: int) -> int:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return default
    if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()):
        raise ValidationError("days must be a non-negative integer")
    try:
        days = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("days must be a non-negative integer") from None
    if days < 0:
        raise ValidationError("days must be a non-negative integer")
    return days


@bp.get("/analytics")
@require_admin
def analytics():
    def _aggregate(s):
        return service.serialize_analytics(service.aggregate(s))

    return ok(run_with_retry(current_app._get_current_object(), _aggregate))


@bp.post("/prune")
@require_admin
def prune():
    """Retention pruning. Not retried automatically: a failed prune leaves the ledger untouched."""
    data = request.get_json(silent=True) or {}
    days = _parse_days(data.get("days"), int(current_app.config.get("LEDGER_RETENTION_DAYS") or 30))

    s = db_session()
    with transaction(s):
        deleted = service.prune_older_than(s, days)
        record_event(
            s,
            actor=ACTOR_ADMIN,
            action="ledger.prune",
            entity_type="LedgerEntry",
            metadata={"days": days, "deleted": deleted},
        )
    return ok({"deletedCount": deleted, "message": f"Deleted {deleted} cipher keys older than {days} days"})
