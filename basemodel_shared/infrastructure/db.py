"""
Database engine and session factory.

Applications with their own engine pass their own session dependency to
``build_crud_router``; ``get_db`` is the default.
"""

from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from basemodel_shared.config.settings import settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True, "pool_recycle": 1800}


engine = create_engine(settings.database_url, **_engine_kwargs(settings.database_url))

# expire_on_commit=False: edited entities are serialized after the commit
SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency yielding one Session per request."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
