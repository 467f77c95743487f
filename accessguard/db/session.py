from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from accessguard.core.config import Settings, settings


def _connect_args(s: Settings) -> dict[str, object]:
    uri = s.sqlalchemy_database_uri
    timeout_ms = max(1, int(s.store_timeout_ms))
    if uri.startswith("sqlite"):
        return {"timeout": timeout_ms / 1000.0, "check_same_thread": False}
    if uri.startswith("postgresql"):
        return {"options": f"-c statement_timeout={timeout_ms}"}
    return {}


def make_engine(s: Settings) -> Engine:
    return create_engine(
        s.sqlalchemy_database_uri,
        pool_pre_ping=True,
        connect_args=_connect_args(s),
    )


engine = make_engine(settings)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
