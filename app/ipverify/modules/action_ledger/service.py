from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.ipverify.constants import LEDGER_ACTIONS
from app.ipverify.db import begin_snapshot
from app.ipverify.errors import ConsistencyViolation, ValidationError
from app.ipverify.modules.action_ledger.models import LedgerEntry
from app.ipverify.utils import isoformat, normalize_identity, utcnow

logger = logging.getLogger(__name__)

ANALYTICS_WINDOW = timedelta(hours=24)


@dataclass(frozen=True)
class HourBucket:
    year: int
    month: int
    day: int
    hour: int
    count: int

    @property
    def start(self) -> datetime:
        return datetime(self.year, self.month, self.day, self.hour)


@dataclass(frozen=True)
class LedgerAnalytics:
    action_counts: dict[str, int] = field(default_factory=dict)
    hourly_activity: list[HourBucket] = field(default_factory=list)


def normalize_action(action: str | None) -> str:
    a = (action or "").strip().lower()
    if a not in LEDGER_ACTIONS:
        raise ValidationError(f"actionType must be one of: {', '.join(LEDGER_ACTIONS)}")
    return a


def append(
    s: Session,
    identity: str,
    action: str,
    key_material: str,
    recorded_at: datetime | None = None,
) -> LedgerEntry:
    identity = normalize_identity(identity)
    action = normalize_action(action)
    key_material = (key_material or "").strip()
    if not key_material:
        raise ValidationError("cipherKey is required")

    now = utcnow()
    entry = LedgerEntry(
        identity=identity,
        action=action,
        key_material=key_material,
        recorded_at=recorded_at or now,
        created_at=now,
    )
    s.add(entry)
    s.flush()
    logger.info("ledger.append: id=%s ip=%s action=%s", entry.id, identity, action)
    return entry


def query_by_identity(s: Session, identity: str) -> list[LedgerEntry]:
    """All entries for an IP, most recent first."""
    identity = normalize_identity(identity)
    entries = (
        s.query(LedgerEntry)
        .filter(LedgerEntry.identity == identity)
        .order_by(LedgerEntry.recorded_at.desc(), LedgerEntry.id.desc())
        .all()
    )
    logger.info("ledger.query: ip=%s count=%d", identity, len(entries))
    return entries


def aggregate(s: Session, *, now: datetime | None = None, window: timedelta = ANALYTICS_WINDOW) -> LedgerAnalytics:
    """
    action_counts covers the whole ledger; hourly_activity only the trailing window,
    bucketed by calendar hour and sorted ascending. Both read from one snapshot.
    """
    begin_snapshot(s)
    now = now or utcnow()
    since = now - window

    counts = {a: 0 for a in LEDGER_ACTIONS}
    for action, n in s.query(LedgerEntry.action, func.count(LedgerEntry.id)).group_by(LedgerEntry.action).all():
        counts[action] = int(n)

    buckets: Counter[tuple[int, int, int, int]] = Counter()
    for (ts,) in s.query(LedgerEntry.recorded_at).filter(LedgerEntry.recorded_at >= since).all():
        buckets[(ts.year, ts.month, ts.day, ts.hour)] += 1

    hourly = [HourBucket(y, m, d, h, n) for (y, m, d, h), n in sorted(buckets.items())]
    return LedgerAnalytics(action_counts=counts, hourly_activity=hourly)


def count_older_than(s: Session, cutoff: datetime) -> int:
    return s.query(func.count(LedgerEntry.id)).filter(LedgerEntry.recorded_at < cutoff).scalar() or 0


def _delete_older(s: Session, cutoff: datetime) -> int:
    return s.query(LedgerEntry).filter(LedgerEntry.recorded_at < cutoff).delete(synchronize_session=False)


def prune_older_than(s: Session, days: int, *, now: datetime | None = None) -> int:
    """
    Delete every entry with recorded_at strictly older than now - days.

    Count, delete and recount happen in the caller's transaction. If the delete removed a
    different number of rows than were counted, or anything older than the cutoff is still
    there afterwards, ConsistencyViolation is raised and the caller must roll back, so either
    the whole consistent set is removed or nothing is.
    """
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        raise ValidationError("days must be a non-negative integer")

    cutoff = (now or utcnow()) - timedelta(days=days)
    expected = count_older_than(s, cutoff)
    deleted = _delete_older(s, cutoff)

    if deleted != expected:
        logger.error("ledger.prune: count mismatch cutoff=%s expected=%d deleted=%d", cutoff.isoformat(), expected, deleted)
        raise ConsistencyViolation("Deletion count mismatch - possible concurrent modification")

    remaining = count_older_than(s, cutoff)
    if remaining != 0:
        logger.error("ledger.prune: verification failed cutoff=%s remaining=%d", cutoff.isoformat(), remaining)
        raise ConsistencyViolation("Deletion verification failed - records still exist")

    logger.info("ledger.prune: deleted=%d older_than_days=%d cutoff=%s", deleted, days, cutoff.isoformat())
    return deleted


def serialize_entry(e: LedgerEntry) -> dict[str, Any]:
    return {
        "id": e.id,
        "ip": e.identity,
        "actionType": e.action,
        "cipherKey": e.key_material,
        "timestamp": isoformat(e.recorded_at),
    }


def serialize_analytics(a: LedgerAnalytics) -> dict[str, Any]:
    return {
        "actionCounts": a.action_counts,
        "hourlyActivity": [
            {
                "year": b.year,
                "month": b.month,
                "day": b.day,
                "hour": b.hour,
                "start": b.start.isoformat(),
                "count": b.count,
            }
            for b in a.hourly_activity
        ],
    }
