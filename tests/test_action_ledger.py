from datetime import timedelta

import pytest

from app.ipverify import create_app
from app.ipverify.db import session_scope
from app.ipverify.errors import ConsistencyViolation, ValidationError
from app.ipverify.models import AuditEvent, Base
from app.ipverify.modules.action_ledger import service
from app.ipverify.modules.action_ledger.models import LedgerEntry
from app.ipverify.utils import utcnow

ADMIN = {"Authorization": "Bearer test-token"}


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_LOCAL_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("GEO_LOOKUP_ENABLED", "0")
    monkeypatch.setenv("NOTIFY_BACKEND", "none")
    monkeypatch.setenv("ADMIN_API_TOKEN", "test-token")
    monkeypatch.delenv("LEDGER_RETENTION_DAYS", raising=False)

    app = create_app()

    engine = app.extensions["sqlalchemy_engine"]
    Base.metadata.create_all(bind=engine)
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def _seed_ages(app, days_old):
    now = utcnow()
    with session_scope(app) as s:
        for i, d in enumerate(days_old):
            service.append(s, "10.1.0.1", "encrypt", f"key-{i}", recorded_at=now - timedelta(days=d))


def _count(app):
    with session_scope(app) as s:
        return s.query(LedgerEntry).count()


def test_append_and_query_most_recent_first(app):
    now = utcnow()
    with session_scope(app) as s:
        service.append(s, "10.1.0.2", "encrypt", "k-old", recorded_at=now - timedelta(hours=3))
        service.append(s, "10.1.0.2", "DECRYPT", "k-new", recorded_at=now)
        service.append(s, "10.1.0.2", "encrypt", "k-mid", recorded_at=now - timedelta(hours=1))
        service.append(s, "10.1.0.3", "encrypt", "other")

    with session_scope(app) as s:
        entries = service.query_by_identity(s, "10.1.0.2")
        assert [e.key_material for e in entries] == ["k-new", "k-mid", "k-old"]
        assert entries[0].action == "decrypt"
        assert service.query_by_identity(s, "10.1.0.9") == []


def test_append_validation(app):
    with session_scope(app) as s:
        with pytest.raises(ValidationError, match="actionType"):
            service.append(s, "10.1.0.4", "rotate", "k")
        with pytest.raises(ValidationError, match="cipherKey"):
            service.append(s, "10.1.0.4", "encrypt", "  ")
        with pytest.raises(ValidationError):
            service.append(s, "999.1.1.1", "encrypt", "k")
    assert _count(app) == 0


def test_prune_removes_only_older_entries(app):
    _seed_ages(app, [10, 40, 45])

    with session_scope(app) as s:
        assert service.prune_older_than(s, 30) == 2

    with session_scope(app) as s:
        remaining = s.query(LedgerEntry).all()
        assert [e.key_material for e in remaining] == ["key-0"]

    with session_scope(app) as s:
        assert service.prune_older_than(s, 30) == 0


def test_prune_zero_days_removes_everything_before_now(app):
    _seed_ages(app, [1, 2])
    with session_scope(app) as s:
        assert service.prune_older_than(s, 0) == 2
    assert _count(app) == 0


@pytest.mark.parametrize("days", [-1, "30", 1.5, True, None])
def test_prune_rejects_bad_days(app, days):
    with session_scope(app) as s:
        with pytest.raises(ValidationError):
            service.prune_older_than(s, days)


def test_prune_count_mismatch_rolls_back(app, monkeypatch):
    _seed_ages(app, [10, 40, 45])
    real_delete = service._delete_older

    def short_delete(s, cutoff):
        return real_delete(s, cutoff) - 1

    monkeypatch.setattr(service, "_delete_older", short_delete)

    with pytest.raises(ConsistencyViolation, match="count mismatch"):
        with session_scope(app) as s:
            service.prune_older_than(s, 30)

    assert _count(app) == 3


def test_prune_verification_failure_rolls_back(app, monkeypatch):
    # A backdated write lands between the delete and the recount.
    _seed_ages(app, [10, 40, 45])
    real_delete = service._delete_older

    def delete_then_backdated_insert(s, cutoff):
        deleted = real_delete(s, cutoff)
        service.append(s, "10.1.0.5", "decrypt", "late", recorded_at=cutoff - timedelta(days=1))
        return deleted

    monkeypatch.setattr(service, "_delete_older", delete_then_backdated_insert)

    with pytest.raises(ConsistencyViolation, match="verification failed"):
        with session_scope(app) as s:
            service.prune_older_than(s, 30)

    with session_scope(app) as s:
        assert sorted(e.key_material for e in s.query(LedgerEntry).all()) == ["key-0", "key-1", "key-2"]


def test_aggregate_windows_hourly_but_counts_everything(app):
    now = utcnow().replace(minute=30, second=0, microsecond=0)
    with session_scope(app) as s:
        service.append(s, "10.1.0.6", "encrypt", "a", recorded_at=now - timedelta(hours=2))
        service.append(s, "10.1.0.6", "encrypt", "b", recorded_at=now - timedelta(hours=2, minutes=10))
        service.append(s, "10.1.0.7", "decrypt", "c", recorded_at=now - timedelta(minutes=5))
        service.append(s, "10.1.0.7", "decrypt", "d", recorded_at=now - timedelta(hours=30))

    with session_scope(app) as s:
        result = service.aggregate(s, now=now)

    assert result.action_counts == {"encrypt": 2, "decrypt": 2}
    starts = [b.start for b in result.hourly_activity]
    assert starts == sorted(starts)
    assert [b.count for b in result.hourly_activity] == [2, 1]
    assert sum(b.count for b in result.hourly_activity) == 3
    assert starts[0] == (now - timedelta(hours=2)).replace(minute=0)


def test_aggregate_empty_ledger_reports_zeroes(app):
    with session_scope(app) as s:
        result = service.aggregate(s)
    assert result.action_counts == {"encrypt": 0, "decrypt": 0}
    assert result.hourly_activity == []


# ---------------------------------------------------------------- HTTP


def test_cipher_key_routes(client):
    r = client.post(
        "/api/cipher-keys",
        json={"ip": "10.1.0.8", "actionType": "encrypt", "cipherKey": "abc", "timestamp": "2026-01-02T03:04:05Z"},
    )
    assert r.status_code == 201
    assert r.json["data"]["timestamp"] == "2026-01-02T03:04:05"
    first_id = r.json["data"]["id"]

    r = client.post("/api/cipher-keys", json={"ip": "10.1.0.8", "actionType": "decrypt", "cipherKey": "def"})
    assert r.status_code == 201

    r = client.post("/api/cipher-keys", json={"ip": "10.1.0.8", "actionType": "wipe", "cipherKey": "x"})
    assert r.status_code == 400
    assert r.json["error"] == "ValidationError"

    r = client.post("/api/cipher-keys", json={"ip": "10.1.0.8", "actionType": "encrypt", "cipherKey": "x", "timestamp": "yesterday"})
    assert r.status_code == 400

    r = client.get("/api/cipher-keys/10.1.0.8")
    assert r.status_code == 200
    data = r.json["data"]
    assert data["count"] == 2
    assert data["entries"][0]["actionType"] == "decrypt"
    assert data["entries"][1]["id"] == first_id
    assert data["entries"][1]["cipherKey"] == "abc"

    r = client.get("/api/cipher-keys/2001:db8::1")
    assert r.status_code == 200
    assert r.json["data"]["count"] == 0


def test_analytics_route(client):
    client.post("/api/cipher-keys", json={"ip": "10.1.0.9", "actionType": "encrypt", "cipherKey": "k"})

    r = client.get("/admin/cipher-keys/analytics")
    assert r.status_code == 403

    r = client.get("/admin/cipher-keys/analytics", headers=ADMIN)
    assert r.status_code == 200
    data = r.json["data"]
    assert data["actionCounts"] == {"encrypt": 1, "decrypt": 0}
    assert len(data["hourlyActivity"]) == 1
    assert data["hourlyActivity"][0]["count"] == 1


def test_prune_route(app, client):
    _seed_ages(app, [10, 40, 45])

    r = client.post("/admin/cipher-keys/prune", json={"days": 30})
    assert r.status_code == 403

    r = client.post("/admin/cipher-keys/prune", json={"days": -3}, headers=ADMIN)
    assert r.status_code == 400

    r = client.post("/admin/cipher-keys/prune", json={"days": "abc"}, headers=ADMIN)
    assert r.status_code == 400

    r = client.post("/admin/cipher-keys/prune", json={"days": 1.5}, headers=ADMIN)
    assert r.status_code == 400
    assert r.json["message"] == "days must be a non-negative integer"
    assert _count(app) == 3

    r = client.post("/admin/cipher-keys/prune", json={"days": 30}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json["data"]["deletedCount"] == 2
    assert r.json["data"]["message"] == "Deleted 2 cipher keys older than 30 days"

    # Default retention comes from config.
    r = client.post("/admin/cipher-keys/prune", headers=ADMIN)
    assert r.status_code == 200
    assert r.json["data"]["deletedCount"] == 0

    with session_scope(app) as s:
        ev = s.query(AuditEvent).filter(AuditEvent.action == "ledger.prune").order_by(AuditEvent.id).first()
        assert ev.actor == "admin"
        assert '"deleted": 2' in ev.metadata_json


def test_prune_route_reports_consistency_violation(app, client, monkeypatch):
    _seed_ages(app, [40])
    monkeypatch.setattr(service, "_delete_older", lambda s, cutoff: 0)

    r = client.post("/admin/cipher-keys/prune", json={"days": 30}, headers=ADMIN)
    assert r.status_code == 500
    assert r.json["error"] == "ConsistencyViolation"
    assert _count(app) == 1
