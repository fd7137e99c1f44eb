"""
Result envelope used by every JSON endpoint:
    {"ok": true, "data": ...}
    {"ok": false, "error": "<kind>", "message": "<human readable>"}
"""

from __future__ import annotations

import traceback
from typing import Any

from flask import current_app, g, jsonify

from app.ipverify.errors import IpVerifyError


def ok(data: Any = None, status: int = 200):
    return jsonify({"ok": True, "data": data}), status


def fail(kind: str, message: str, status: int, *, exc: BaseException | None = None):
    body: dict[str, Any] = {"ok": False, "error": kind, "message": message}
    rid = getattr(g, "request_id", None)
    if rid:
        body["request_id"] = rid
    if exc is not None and current_app.config.get("DIAGNOSTICS_ENABLED"):
        body["detail"] = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
    return jsonify(body), status


def fail_from(e: IpVerifyError):
    return fail(e.kind, e.message, e.http_status, exc=e)
