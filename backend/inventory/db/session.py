from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from inventory.core.config import DefenseSettings, get_settings


def build_engine(settings: DefenseSettings) -> Engine:
    """Create the engine with every storage call bounded by the configured timeout."""
    timeout = settings.storage_timeout_seconds
    if settings.dialect == "sqlite":
        return create_engine(
            settings.database_url,
            connect_args={"check_same_thread": False, "timeout": timeout},
        )
    timeout_ms = int(timeout * 1000)
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_timeout=timeout,
        connect_args={
            "connect_timeout": max(1, int(timeout)),
            "options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}",
        },
    )


engine = build_engine(get_settings())
SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
