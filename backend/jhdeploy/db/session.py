# jhdeploy/db/session.py
"""Database engine and session helpers for the run history store."""

from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from jhdeploy.core.config import settings

Base = declarative_base()

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_engine() -> Engine:
    """Create the engine lazily so importing models never opens a connection."""
    global _engine
    if _engine is None:
        connect_args = {}
        if settings.DATABASE_URL.startswith("sqlite"):
            # The background executor writes from the event loop thread
            connect_args["check_same_thread"] = False
        _engine = create_engine(
            settings.DATABASE_URL, pool_pre_ping=True, connect_args=connect_args
        )
    return _engine


def SessionLocal() -> sessionmaker:
    """Return the shared session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            autocommit=False, autoflush=False, bind=get_engine()
        )
    return _session_factory


def init_db(engine: Optional[Engine] = None) -> None:
    """Create the run history tables if they are missing."""
    # Models must be imported so they are registered on Base
    from jhdeploy.models import pipeline_runs, users  # noqa: F401

    Base.metadata.create_all(bind=engine or get_engine())


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding a session per request."""
    db = SessionLocal()()
    try:
        yield db
    finally:
        db.close()
