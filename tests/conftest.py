# pyright: reportUnusedFunction=false
import os
import sys
import tempfile
from collections.abc import Iterator
from datetime import datetime, timedelta
from pathlib import Path

import pytest
from sqlalchemy.orm import Session


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Settings are read at import time; point them at a throwaway SQLite file unless
# the environment already provides a database.
_DB_DIR = tempfile.mkdtemp(prefix="accessguard-tests-")
_ = os.environ.setdefault("DATABASE_URL", f"sqlite:///{_DB_DIR}/accessguard.db")
_ = os.environ.setdefault("ENV", "test")


def _ensure_test_schema() -> None:
    from accessguard.db.base import Base
    from accessguard.db.session import engine

    Base.metadata.create_all(bind=engine)


_ensure_test_schema()


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now: datetime = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture(autouse=True)
def _isolate_db() -> None:
    from accessguard.db.base import Base
    from accessguard.db.session import engine

    tables = list(Base.metadata.sorted_tables)
    if not tables:
        return

    with engine.begin() as conn:
        for t in reversed(tables):
            _ = conn.execute(t.delete())


@pytest.fixture()
def db() -> Iterator[Session]:
    from accessguard.db.session import SessionLocal

    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 1, 12, 0, 0))
