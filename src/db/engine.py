"""Database engine and session factory.

The store runs synchronous sessions in a worker thread, so only a sync
engine is needed.
"""

from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.settings import get_settings

_sync_engine = None


def create_sync_engine(database_url: str):
    """Create an engine; in-memory SQLite shares one connection across threads."""
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in database_url or database_url == "sqlite://":
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)
    return create_engine(database_url, pool_pre_ping=True)


def get_sync_engine(database_url: Optional[str] = None):
    """Get or create the process-wide sync engine."""
    global _sync_engine
    if database_url is not None:
        return create_sync_engine(database_url)
    if _sync_engine is None:
        _sync_engine = create_sync_engine(get_settings().database_url)
    return _sync_engine


def get_sync_session_factory(engine=None):
    return sessionmaker(bind=engine or get_sync_engine(), expire_on_commit=False)


# Convenience alias
SyncSessionLocal = get_sync_session_factory
