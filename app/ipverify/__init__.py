import atexit
import logging
import uuid

from flask import Flask, g, request
from dotenv import load_dotenv
from sqlalchemy import inspect as sa_inspect
from werkzeug.exceptions import HTTPException

from app.ipverify.audit import ACTOR_PUBLIC
from app.ipverify.config import load_config
from app.ipverify.db import init_db, teardown_db_session
from app.ipverify.errors import IpVerifyError
from app.ipverify.geo import geo_client_from_config
from app.ipverify.notify import init_notifications
from app.ipverify.responses import fail, fail_from
from app.ipverify.routes import bp as routes_bp
from app.ipverify.storage import storage_from_config, S3Storage
from app.ipverify.modules.status_registry.admin import bp as status_registry_admin_bp
from app.ipverify.modules.action_ledger.admin import bp as action_ledger_admin_bp

# Tables the running code expects; checked against the live schema.
REQUIRED_TABLES = ("status_records", "status_attachments", "cipher_key_actions", "audit_events")


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("ADMIN_API_TOKEN"):
            raise RuntimeError("ADMIN_API_TOKEN must be set in production.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Process-wide collaborators: created once here, reached through app.extensions.
    app.extensions["attachment_storage"] = storage_from_config(app.config)
    app.extensions["geo_client"] = geo_client_from_config(app.config)
    dispatcher = init_notifications(app)
    atexit.register(dispatcher.shutdown, wait=False)

    # Storage health check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = []
        for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
            if not app.config.get(key):
                missing_s3.append(key)
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))
        else:
            try:
                storage = app.extensions["attachment_storage"]
                if isinstance(storage, S3Storage):
                    storage._client().head_bucket(Bucket=storage.bucket)
                    app.logger.info("Storage health check PASSED: S3 bucket '%s' accessible", storage.bucket)
            except Exception as e:
                app.logger.error("STORAGE CONFIG ERROR: Cannot access S3 bucket: %s", e)

    app.register_blueprint(routes_bp)
    app.register_blueprint(status_registry_admin_bp, url_prefix="/admin/encryption")
    app.register_blueprint(action_ledger_admin_bp, url_prefix="/admin/cipher-keys")

    @app.before_request
    def _assign_request_id():
        if not getattr(g, "request_id", None):
            g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        g.actor = ACTOR_PUBLIC

    app.teardown_appcontext(teardown_db_session)

    # Migration health (lean): detect drift between code expectations and DB schema.
    app.config.setdefault("_schema_health_ok", False)
    app.config.setdefault("_schema_health_missing", [])
    app.config.setdefault("_schema_health_logged", False)

    def _run_schema_health_check() -> bool:
        missing: list[str] = []
        try:
            engine = app.extensions.get("sqlalchemy_engine")
            if engine is None:
                raise RuntimeError("sqlalchemy_engine not initialized")
            insp = sa_inspect(engine)
            for table in REQUIRED_TABLES:
                if not insp.has_table(table):
                    missing.append(f"{table} (table)")
            if insp.has_table("status_records"):
                cols = {c["name"] for c in insp.get_columns("status_records")}
                for col in ("access_count", "last_accessed", "requested_at", "review_notes"):
                    if col not in cols:
                        missing.append(f"status_records.{col}")
        except Exception as e:
            app.logger.exception("Schema health check failed: %s", e)
            missing.append("(schema inspection failed)")

        app.config["_schema_health_missing"] = missing
        ok = not missing
        if not ok and not app.config.get("_schema_health_logged"):
            app.config["_schema_health_logged"] = True
            app.logger.error("DB schema out of date; run `alembic upgrade head`. Missing: %s", ", ".join(missing))
        app.config["_schema_health_ok"] = ok
        return ok

    _run_schema_health_check()

    @app.before_request
    def _schema_health_guardrail():  # type: ignore[no-redef]
        if not request.path.startswith(("/api/", "/admin/")):
            return None
        if app.config.get("_schema_health_ok") or _run_schema_health_check():
            return None
        return fail(
            "SchemaOutOfDate",
            "Database schema is out of date. Missing: " + ", ".join(app.config.get("_schema_health_missing") or []),
            500,
        )

    @app.errorhandler(IpVerifyError)
    def _err_domain(e: IpVerifyError):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        if e.http_status >= 500:
            app.logger.error("%s on %s (request_id=%s): %s", e.kind, request.path, rid, e.message)
        else:
            app.logger.info("%s on %s (request_id=%s): %s", e.kind, request.path, rid, e.message)
        return fail_from(e)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        kind = (e.name or "HTTPError").replace(" ", "")
        if e.code == 413:
            return fail(kind, "File too large. Maximum upload size is 25MB.", 413)
        return fail(kind, e.description or kind, e.code or 500)

    @app.errorhandler(Exception)
    def _err_500(e: Exception):  # type: ignore[no-redef]
        # Ensure stack trace shows in logs; clients only see it in diagnostic mode.
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return fail("InternalError", "Server error", 500, exc=e)

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
