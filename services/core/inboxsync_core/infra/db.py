"""Database infrastructure for Inboxsync Core."""

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from inboxsync_core.config import get_settings


def get_sync_engine():
    """Get synchronous database engine."""
    settings = get_settings()
    return create_engine(
        settings.database_url,
        pool_pre_ping=True,
        pool_recycle=3600,
        echo=False,
    )


# Session factory
_sync_engine = None
_sync_session_factory = None


def get_sync_session_factory() -> sessionmaker[Session]:
    """Get synchronous session factory (singleton)."""
    global _sync_engine, _sync_session_factory
    if _sync_session_factory is None:
        _sync_engine = get_sync_engine()
        _sync_session_factory = sessionmaker(
            bind=_sync_engine,
            autocommit=False,
            autoflush=False,
        )
    return _sync_session_factory
