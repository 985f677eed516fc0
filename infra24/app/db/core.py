"""Database engine and sessions.

The engine is built on first use from ``settings.DATABASE_URL`` so tests can
point the application at a throwaway database before anything connects.
"""

from typing import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from infra24.app.core import config as _config
from infra24.app.core.logging import get_logger

logger = get_logger("database")

Base = declarative_base()

engine = None
SessionLocal = None


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # TestClient and uvicorn workers hand sessions across threads
        return {"check_same_thread": False}
    return {}


def get_engine():
    global engine, SessionLocal
    if engine is None:
        url = _config.settings.DATABASE_URL
        engine = create_engine(url, future=True, connect_args=_connect_args(url))
        SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
        logger.info(f"Database engine initialized ({engine.dialect.name})")
    return engine


def get_session_factory() -> sessionmaker:
    get_engine()
    return SessionLocal


def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""
    global engine, SessionLocal
    if engine is not None:
        engine.dispose()
    engine = None
    SessionLocal = None


def create_all_tables() -> None:
    from infra24.app.models import core as _models  # noqa: F401  registers the tables

    Base.metadata.create_all(bind=get_engine())


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session that is closed after the request."""
    db = get_session_factory()()
    try:
        yield db
    finally:
        db.close()
