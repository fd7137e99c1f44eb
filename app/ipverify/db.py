from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from collections.abc import Callable, Generator
from typing import TypeVar

from flask import Flask, g
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from app.ipverify.errors import TransientStoreError

T = TypeVar("T")

TRANSIENT_RETRY_ATTEMPTS = 3
SQLITE_BUSY_TIMEOUT_SECONDS = 15


def create_db_engine(db_url: str, *, checkout_logger: logging.Logger | None = None) -> Engine:
    """
    Engine with the pool and transaction settings shared by the app and the scripts.
    """
    is_postgres = db_url.startswith("postgres")
    is_sqlite = db_url.startswith("sqlite")
    engine_kwargs: dict[str, object] = {
        "future": True,
        "pool_pre_ping": True,
    }
    if is_postgres:
        engine_kwargs.update(
            {
                "pool_recycle": 1800,
                "pool_size": 5,
                "max_overflow": 10,
                "pool_timeout": 30,
                "connect_args": {"options": "-c statement_timeout=30000"},
            }
        )
    elif is_sqlite:
        engine_kwargs["connect_args"] = {"timeout": SQLITE_BUSY_TIMEOUT_SECONDS}
    engine = create_engine(db_url, **engine_kwargs)
    if is_sqlite:
        # pysqlite defers BEGIN until the first DML; take it over so every statement of the
        # unit of work (reads included) runs in one transaction and SAVEPOINT nests inside it.
        # IMMEDIATE takes the write lock at BEGIN, so concurrent writers queue on the busy timeout.
        @event.listens_for(engine, "connect")
        def _sqlite_connect(dbapi_connection, connection_record):  # type: ignore[no-redef]
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _sqlite_begin(conn):  # type: ignore[no-redef]
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    if checkout_logger is not None:
        @event.listens_for(engine, "checkout")
        def _receive_checkout(dbapi_connection, connection_record, connection_proxy):  # type: ignore[no-redef]
            checkout_logger.debug("DB connection checkout from pool")
    return engine


def init_db(app: Flask) -> None:
    engine = create_db_engine(
        app.config["DATABASE_URL"],
        checkout_logger=app.logger if app.config.get("ENV") != "production" else None,
    )
    app.extensions["sqlalchemy_engine"] = engine
    app.extensions["sqlalchemy_sessionmaker"] = sessionmaker(
        bind=engine,
        class_=Session,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )


def db_session(app: Flask | None = None) -> Session:
    """
    Request-scoped session. Use inside request handlers.
    """
    if hasattr(g, "db_session") and g.db_session is not None:
        return g.db_session
    if app is None:
        from flask import current_app

        app = current_app
    sm = app.extensions["sqlalchemy_sessionmaker"]
    g.db_session = sm()  # type: ignore[assignment]
    return g.db_session


def teardown_db_session(_exc: BaseException | None) -> None:
    s: Session | None = getattr(g, "db_session", None)
    if s is not None:
        try:
            s.close()
        except Exception:
            pass
        g.db_session = None


@contextmanager
def transaction(s: Session) -> Generator[Session, None, None]:
    """
    One public operation = one unit of work: commit on success, roll back on any error.

    Driver-level failures (lost connection, lock/statement timeout, serialization failure)
    are re-raised as TransientStoreError so callers can decide whether to retry.
    """
    try:
        yield s
        s.commit()
    except (OperationalError, InterfaceError) as e:
        s.rollback()
        raise TransientStoreError(f"Transaction aborted by the store ({e.__class__.__name__}).") from e
    except Exception:
        s.rollback()
        raise


@contextmanager
def session_scope(app: Flask) -> Generator[Session, None, None]:
    """
    Non-request helper for scripts and tests: yields a session and commits/rolls back.
    """
    sm = app.extensions["sqlalchemy_sessionmaker"]
    s: Session = sm()
    try:
        with transaction(s):
            yield s
    finally:
        s.close()


def run_with_retry(app: Flask, fn: Callable[[Session], T], *, attempts: int = TRANSIENT_RETRY_ATTEMPTS) -> T:
    """
    Run `fn` in a fresh transaction, retrying from scratch on TransientStoreError.
    Only for operations that are safe to repeat (lookups, reads, aggregates).
    """
    last_err: TransientStoreError | None = None
    for attempt in range(1, attempts + 1):
        try:
            with session_scope(app) as s:
                return fn(s)
        except TransientStoreError as e:
            last_err = e
            app.logger.warning("Transient store error (attempt %s/%s): %s", attempt, attempts, e)
            time.sleep(min(0.05 * attempt, 0.5))
    assert last_err is not None
    raise last_err


def begin_snapshot(s: Session) -> None:
    """
    Pin the current transaction to a single snapshot for multi-statement reads.
    Must be called before the first statement of the transaction; SQLite is serialized already.
    """
    if s.in_transaction():
        return
    if s.get_bind().dialect.name == "postgresql":
        s.connection(execution_options={"isolation_level": "REPEATABLE READ"})
