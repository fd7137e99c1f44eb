from datetime import timedelta

import pytest

from app.ipverify.models import AuditEvent
from app.ipverify.modules.action_ledger import service as ledger
from app.ipverify.modules.action_ledger.models import LedgerEntry
from app.ipverify.utils import utcnow
from scripts import init_db, prune_ledger, release
from scripts._db_utils import script_session


@pytest.fixture()
def db_url(tmp_path):
    url = f"sqlite:///{tmp_path/'script.db'}"
    tables = init_db.init_schema(database_url=url)
    assert "cipher_key_actions" in tables
    assert "status_records" in tables
    return url


def _seed(db_url, days_old):
    now = utcnow()
    with script_session(db_url) as s:
        for i, d in enumerate(days_old):
            ledger.append(s, "10.3.0.1", "encrypt", f"k{i}", recorded_at=now - timedelta(days=d))


def test_prune_script_dry_run_then_delete(db_url):
    _seed(db_url, [5, 40, 50])

    assert prune_ledger.run(30, dry_run=True, database_url=db_url) == 2
    with script_session(db_url) as s:
        assert s.query(LedgerEntry).count() == 3

    assert prune_ledger.run(30, database_url=db_url) == 2
    with script_session(db_url) as s:
        assert s.query(LedgerEntry).count() == 1
        ev = s.query(AuditEvent).one()
        assert ev.actor == "script"
        assert ev.action == "ledger.prune"


def test_release_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    with pytest.raises(RuntimeError, match="DATABASE_URL"):
        release.run_release()


def test_release_refuses_sqlite_in_production(monkeypatch):
    monkeypatch.setenv("DATABASE_URL", "sqlite:///prod.db")
    monkeypatch.setenv("ENV", "production")
    with pytest.raises(RuntimeError, match="sqlite"):
        release.run_release()


def test_script_session_reads_inside_transaction(db_url):
    with script_session(db_url) as s:
        assert ledger.count_older_than(s, utcnow()) == 0
        assert s.connection().connection.dbapi_connection.in_transaction is True
