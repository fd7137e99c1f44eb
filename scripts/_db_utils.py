from __future__ import annotations

import os
from contextlib import contextmanager

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.ipverify.db import create_db_engine, transaction


def resolve_db_url(database_url: str | None = None) -> str:
    return (database_url or os.environ.get("DATABASE_URL") or "sqlite:///ipverify.db").strip()


def create_script_engine(db_url: str) -> Engine:
    # Same transaction setup as the app: on SQLite the first read already opens the transaction.
    return create_db_engine(db_url)


@contextmanager
def script_session(db_url: str):
    engine = create_script_engine(db_url)
    sm = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False, expire_on_commit=False, future=True)
    s: Session = sm()
    try:
        with transaction(s):
            yield s
    finally:
        s.close()
        engine.dispose()
