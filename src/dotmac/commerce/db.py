"""
SQLAlchemy 2.0 Database Configuration

Synchronous engine and session factory used by the checkout unit of work.
"""

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from dotmac.commerce.settings import settings


def get_database_url() -> str:
    """Get the sync database URL from settings."""
    return settings.database.sqlalchemy_url


# ==========================================
# Engine and Session Management
# ==========================================

_sync_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None


def get_sync_engine() -> Engine:
    """Get or create the synchronous engine."""
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_engine(
            get_database_url(),
            echo=settings.database.echo,
            pool_pre_ping=settings.database.pool_pre_ping,
        )
    return _sync_engine


def get_session_factory() -> sessionmaker[Session]:
    """Get or create the session factory bound to the sync engine."""
    global _session_factory
    if _session_factory is None:
        _session_factory = sessionmaker(
            autoflush=False,
            bind=get_sync_engine(),
            class_=Session,
            expire_on_commit=False,
        )
    return _session_factory


def reset_engine() -> None:
    """Dispose the engine and forget the session factory (mainly for testing)."""
    global _sync_engine, _session_factory
    if _sync_engine is not None:
        _sync_engine.dispose()
    _sync_engine = None
    _session_factory = None


__all__ = ["get_database_url", "get_sync_engine", "get_session_factory", "reset_engine"]
