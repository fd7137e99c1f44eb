import hmac
from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import Request, current_app, g, request

from app.ipverify.audit import ACTOR_ADMIN
from app.ipverify.responses import fail


def _presented_token(req: Request) -> str:
    auth = (req.headers.get("Authorization") or "").strip()
    if auth.lower().startswith("bearer "):
        return auth[7:].strip()
    return (req.headers.get("X-Admin-Token") or "").strip()


def is_admin_request(req: Request) -> bool:
    expected = (current_app.config.get("ADMIN_API_TOKEN") or "").strip()
    if not expected:
        # No token configured -> admin surface is closed.
        return False
    presented = _presented_token(req)
    return bool(presented) and hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8"))


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not is_admin_request(request):
            g.missing_permission = "admin"
            current_app.logger.warning(
                "Forbidden: admin token missing or invalid path=%s request_id=%s",
                request.path,
                getattr(g, "request_id", None),
            )
            return fail("Forbidden", "Admin credentials required.", 403)
        g.actor = ACTOR_ADMIN
        return fn(*args, **kwargs)

    return wrapped
