import os
from collections.abc import Generator
from datetime import datetime, timedelta

import pytest

os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("MAINTENANCE_ENABLED", "false")

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from inventory.core.config import DefenseSettings  # noqa: E402
from inventory.core.metrics import reset_metrics  # noqa: E402
from inventory.db import models  # noqa: E402,F401
from inventory.db.base import Base  # noqa: E402


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> None:
        self.now += timedelta(**delta)


def _memory_engine():
    return create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture(autouse=True)
def _clean_metrics() -> Generator[None, None, None]:
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = _memory_engine()
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def broken_session_factory() -> Generator[sessionmaker, None, None]:
    # No tables were created, so every statement fails like an unavailable store.
    engine = _memory_engine()
    try:
        yield sessionmaker(bind=engine, autocommit=False, autoflush=False)
    finally:
        engine.dispose()


@pytest.fixture()
def broken_session(broken_session_factory) -> Generator[Session, None, None]:
    session = broken_session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 1, 12, 0, 0))


@pytest.fixture()
def settings() -> DefenseSettings:
    return DefenseSettings(
        database_url="sqlite://",
        max_attempts_per_account=5,
        max_attempts_per_origin=10,
        window_minutes=15,
        lockout_duration_minutes=15,
        retention_hours=24,
        maintenance_enabled=False,
    )
