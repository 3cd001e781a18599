"""Database infrastructure for Topicdesk Core."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from topicdesk_core.config import get_settings


def get_sync_engine() -> Engine:
    """Get synchronous database engine."""
    settings = get_settings()
    kwargs: dict = {"pool_pre_ping": True, "echo": False}
    if not settings.database_url.startswith("sqlite"):
        kwargs["pool_recycle"] = 3600
    return create_engine(settings.database_url, **kwargs)


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