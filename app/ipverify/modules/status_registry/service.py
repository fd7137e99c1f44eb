"""
STATUS REGISTRY
===============

Operation          | Creates record? | Status effect
-------------------|-----------------|------------------------------------------
lookup_or_create   | YES (first hit) | none (new records start Unverified)
submit             | YES (first hit) | any -> Pending
decide             | NO              | Pending -> Approved | Rejected
remove_attachment  | NO              | none
apply_enrichment   | NO              | none (fills geo fields once)

INVARIANTS:
- One record per identity, enforced by the unique constraint on status_records.identity.
  Losing a create race is not an error: the insert runs in a SAVEPOINT and the loser
  re-reads the winner's row and updates it instead (bounded by MAX_CREATE_ATTEMPTS).
- Decisions only apply to Pending requests; re-deciding requires a fresh submission.
- Functions here flush but never commit. The caller owns the transaction (db.transaction).
- No network I/O inside a transaction: geo lookups run after the creating transaction
  commits (lookup_geo), and their result is stored in a second short one (apply_enrichment).
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.ipverify.constants import (
    ATTACHMENT_ALIASES,
    ATTACHMENT_PRIMARY,
    ATTACHMENT_SUPPORTING,
    DECISIONS,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_UNVERIFIED,
    TRANSITIONS,
)
from app.ipverify.errors import InvalidTransition, NotFound, TransientStoreError, ValidationError
from app.ipverify.geo import GeoInfo
from app.ipverify.modules.status_registry.models import StatusAttachment, StatusRecord
from app.ipverify.notify import NotificationPayload
from app.ipverify.utils import isoformat, normalize_identity, utcnow

logger = logging.getLogger(__name__)

MAX_CREATE_ATTEMPTS = 3

Enricher = Callable[[str], GeoInfo | None]


@dataclass(frozen=True)
class ContactInfo:
    device_model: str | None = None
    os_version: str | None = None
    email: str | None = None
    phone_number: str | None = None


@dataclass(frozen=True)
class AttachmentInput:
    remote_id: str
    url: str
    uploaded_at: datetime | None = None


def _clean(v: str | None, limit: int) -> str | None:
    s = (v or "").strip()
    return s[:limit] or None


def get_record(s: Session, identity: str, *, for_update: bool = False) -> StatusRecord | None:
    q = s.query(StatusRecord).filter(StatusRecord.identity == identity)
    if for_update:
        q = q.with_for_update()
    return q.one_or_none()


def lookup_geo(enrich: Enricher | None, identity: str) -> GeoInfo | None:
    """
    Run the enrichment lookup. Call this outside any open transaction: it may block on network I/O.
    """
    if enrich is None:
        return None
    try:
        return enrich(identity)
    except Exception as e:
        logger.warning("Geo enrichment failed for ip=%s: %s", identity, e)
        return None


def _has_geo(rec: StatusRecord) -> bool:
    return any(v is not None for v in rec.geo_context().values())


def apply_enrichment(s: Session, identity: str, geo: GeoInfo | None) -> bool:
    """
    Fill the geo fields of a record that has none yet. Existing enrichment is never overwritten.
    """
    if geo is None:
        return False
    rec = get_record(s, normalize_identity(identity))
    if rec is None or _has_geo(rec):
        return False
    rec.city = geo.city
    rec.region = geo.region
    rec.country = geo.country
    rec.latitude = geo.latitude
    rec.longitude = geo.longitude
    rec.isp = geo.isp
    s.flush()
    logger.info("apply_enrichment: ip=%s country=%s", rec.identity, rec.country)
    return True


def _check_transition(current: str, target: str) -> None:
    if target not in TRANSITIONS.get(current, frozenset()):
        raise InvalidTransition(f"Cannot move a request from {current} to {target}.")


def lookup_or_create(s: Session, identity: str) -> tuple[StatusRecord, bool]:
    """
    Returns (record, is_new). Existing records get access_count += 1 and a fresh last_accessed.
    New records are created without geo data; see lookup_geo / apply_enrichment.
    """
    identity = normalize_identity(identity)

    for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
        rec = get_record(s, identity)
        if rec is not None:
            # SQL-side increment so concurrent lookups never lose a count.
            rec.access_count = StatusRecord.access_count + 1
            rec.last_accessed = utcnow()
            s.flush()
            s.refresh(rec, attribute_names=["access_count"])
            return rec, False

        now = utcnow()
        rec = StatusRecord(
            identity=identity,
            status=STATUS_UNVERIFIED,
            access_count=1,
            last_accessed=now,
            created_at=now,
        )
        try:
            with s.begin_nested():
                s.add(rec)
                s.flush()  # force unique index check now
        except IntegrityError as ie:
            logger.info(
                "lookup_or_create: ip=%s created concurrently (attempt %s/%s), retrying as update: %s",
                identity,
                attempt,
                MAX_CREATE_ATTEMPTS,
                str(ie)[:100],
            )
            continue
        logger.info("lookup_or_create: new record ip=%s", identity)
        return rec, True

    raise TransientStoreError(f"Could not create or load record for {identity} after {MAX_CREATE_ATTEMPTS} attempts.")


def submit(
    s: Session,
    identity: str,
    contact: ContactInfo,
    primary: Iterable[AttachmentInput],
    supporting: Iterable[AttachmentInput] = (),
) -> tuple[StatusRecord, bool]:
    """
    Record (or re-open) an encryption request. Always leaves the record Pending.
    Returns (record, is_new) like lookup_or_create.
    """
    primary = list(primary)
    supporting = list(supporting)
    if not primary:
        raise ValidationError("Encryption card images are required")

    rec, is_new = lookup_or_create(s, identity)
    _check_transition(rec.status, STATUS_PENDING)

    rec.device_model = _clean(contact.device_model, 255)
    rec.os_version = _clean(contact.os_version, 128)
    rec.email = _clean(contact.email, 320)
    rec.phone_number = _clean(contact.phone_number, 64)

    now = utcnow()
    for kind, items in ((ATTACHMENT_PRIMARY, primary), (ATTACHMENT_SUPPORTING, supporting)):
        for a in items:
            rec.attachments.append(
                StatusAttachment(kind=kind, remote_id=a.remote_id, url=a.url, uploaded_at=a.uploaded_at or now)
            )

    previous = rec.status
    rec.status = STATUS_PENDING
    rec.requested_at = now
    s.flush()
    logger.info(
        "submit: ip=%s %s -> %s primary=%d supporting=%d",
        rec.identity,
        previous,
        rec.status,
        len(primary),
        len(supporting),
    )
    return rec, is_new


def normalize_decision(decision: str | None) -> str:
    d = (decision or "").strip().capitalize()
    if d not in DECISIONS:
        raise ValidationError("Status must be approved or rejected")
    return d


def decide(s: Session, identity: str, decision: str, notes: str | None = None) -> StatusRecord:
    decision = normalize_decision(decision)
    identity = normalize_identity(identity)

    rec = get_record(s, identity, for_update=True)
    if rec is None:
        raise NotFound("IP record not found")
    if rec.status != STATUS_PENDING:
        raise InvalidTransition(
            f"Only Pending requests can be decided (current status: {rec.status}). "
            "A new submission is required to review it again."
        )

    rec.status = decision
    notes = (notes or "").strip()
    if notes:
        rec.review_notes = notes
    s.flush()
    logger.info("decide: ip=%s -> %s verified=%s", rec.identity, rec.status, rec.is_verified)
    return rec


def remove_attachment(s: Session, identity: str, attachment_id: int | str, which: str) -> StatusAttachment:
    """
    Drop one evidence reference; returns it so the caller can delete the stored binary.
    """
    kind = ATTACHMENT_ALIASES.get((which or "").strip().lower())
    if kind is None:
        raise ValidationError("Attachment type must be primary or supporting")
    identity = normalize_identity(identity)

    rec = get_record(s, identity, for_update=True)
    if rec is None:
        raise NotFound("IP record not found")

    try:
        att_id = int(attachment_id)
    except (TypeError, ValueError):
        raise NotFound("Image not found") from None

    target = next((a for a in rec.attachments if a.id == att_id and a.kind == kind), None)
    if target is None:
        raise NotFound("Image not found")

    rec.attachments.remove(target)
    s.flush()
    logger.info("remove_attachment: ip=%s id=%s kind=%s remote_id=%s", rec.identity, att_id, kind, target.remote_id)
    return target


def list_pending(s: Session) -> list[StatusRecord]:
    return (
        s.query(StatusRecord)
        .filter(StatusRecord.status == STATUS_PENDING)
        .order_by(StatusRecord.requested_at.desc(), StatusRecord.id.desc())
        .all()
    )


def registry_stats(s: Session, *, recent_limit: int = 10) -> dict[str, Any]:
    total = s.query(StatusRecord).count()
    verified = s.query(StatusRecord).filter(StatusRecord.status == STATUS_APPROVED).count()
    pending = s.query(StatusRecord).filter(StatusRecord.status == STATUS_PENDING).count()
    recent = (
        s.query(StatusRecord)
        .order_by(StatusRecord.last_accessed.desc(), StatusRecord.id.desc())
        .limit(recent_limit)
        .all()
    )
    return {
        "total": total,
        "verified": verified,
        "pending": pending,
        "verified_percentage": round(verified / total * 100, 2) if total else 0.0,
        "recent": [
            {
                "ip": r.identity,
                "status": r.status,
                "verified": r.is_verified,
                "city": r.city,
                "country": r.country,
                "last_accessed": isoformat(r.last_accessed),
            }
            for r in recent
        ],
    }


def serialize_attachment(a: StatusAttachment) -> dict[str, Any]:
    return {
        "id": a.id,
        "remote_id": a.remote_id,
        "url": a.url,
        "uploaded_at": isoformat(a.uploaded_at),
    }


def serialize_record(rec: StatusRecord) -> dict[str, Any]:
    return {
        "ip": rec.identity,
        "status": rec.status,
        "verified": rec.is_verified,
        "access_count": rec.access_count,
        "last_accessed": isoformat(rec.last_accessed),
        "requested_at": isoformat(rec.requested_at),
        "review_notes": rec.review_notes,
        "contact": rec.contact_info(),
        "geo": rec.geo_context(),
        "primary_attachments": [serialize_attachment(a) for a in rec.primary_attachments],
        "supporting_attachments": [serialize_attachment(a) for a in rec.supporting_attachments],
    }


def build_notification(
    rec: StatusRecord,
    primary: list[AttachmentInput],
    supporting: list[AttachmentInput],
    *,
    geo: GeoInfo | None = None,
) -> NotificationPayload:
    """Reviewer notification for the attachments added by one submission. `geo` overrides the record's geo fields."""
    attachments = [{"type": "Encryption Card", "url": a.url} for a in primary]
    attachments += [{"type": "Receipt", "url": a.url} for a in supporting]
    return NotificationPayload(
        identity=rec.identity,
        context={**rec.geo_context(), **(geo.as_dict() if geo else {}), **rec.contact_info()},
        attachments=attachments,
        requested_at=rec.requested_at,
    )
