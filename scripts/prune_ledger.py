#!/usr/bin/env python
"""
Cipher-key ledger retention pruning.

Deletes ledger entries older than N days in one verified transaction
(count, delete, recount). On a mismatch nothing is deleted and the script exits 2.

Usage:
    # Count what would be deleted
    python scripts/prune_ledger.py --days 30 --dry-run

    # Delete (defaults to LEDGER_RETENTION_DAYS, then 30)
    python scripts/prune_ledger.py --days 30

Environment:
    DATABASE_URL: database connection string
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from datetime import timedelta
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.ipverify.audit import ACTOR_SCRIPT, record_event  # noqa: E402
from app.ipverify.errors import ConsistencyViolation, TransientStoreError  # noqa: E402
from app.ipverify.modules.action_ledger.service import count_older_than, prune_older_than  # noqa: E402
from app.ipverify.utils import utcnow  # noqa: E402
from scripts._db_utils import resolve_db_url, script_session  # noqa: E402

logger = logging.getLogger("prune_ledger")


def run(days: int, *, dry_run: bool = False, database_url: str | None = None) -> int:
    db_url = resolve_db_url(database_url)
    with script_session(db_url) as s:
        if dry_run:
            n = count_older_than(s, utcnow() - timedelta(days=days))
            logger.info("Dry run: %d entries older than %d days", n, days)
            return n
        deleted = prune_older_than(s, days)
        record_event(
            s,
            actor=ACTOR_SCRIPT,
            action="ledger.prune",
            entity_type="LedgerEntry",
            metadata={"days": days, "deleted": deleted},
        )
    logger.info("Deleted %d entries older than %d days", deleted, days)
    return deleted


def main() -> None:
    load_dotenv()
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    default_days = int((os.environ.get("LEDGER_RETENTION_DAYS") or "30").strip() or "30")
    parser = argparse.ArgumentParser(description="Cipher-key ledger retention pruning")
    parser.add_argument("--days", type=int, default=default_days, help="Delete entries older than this many days")
    parser.add_argument("--dry-run", action="store_true", help="Only count matching entries")
    args = parser.parse_args()

    if args.days < 0:
        parser.error("--days must be >= 0")

    try:
        n = run(args.days, dry_run=args.dry_run)
    except ConsistencyViolation as e:
        logger.error("Prune aborted, nothing deleted: %s", e)
        sys.exit(2)
    except TransientStoreError as e:
        logger.error("Prune aborted by the database, safe to re-run: %s", e)
        sys.exit(3)
    print(n)


if __name__ == "__main__":
    main()
