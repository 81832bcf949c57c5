"""
Study Portal Backend — Primary Database Engine Factory
========================================================

What:  Declarative base for ORM models and a factory for async engines and
       session factories pointed at the primary database.
How:   Engines are created lazily by the PrimaryStoreClient when it connects,
       not at import time, so the application starts (and serves from the
       local store) even when the primary database is down.
Who:   PrimaryStoreClient, Alembic env.py, ORM models.

Connection Pooling Strategy (PostgreSQL):
    pool_size / max_overflow from settings
    pool_pre_ping:     validates connections before use (catches stale ones after a DB restart)
    pool_recycle=3600: recycles connections every hour
    connect timeout:   passed to the driver so an unreachable host fails fast

SQLite (used by the test suite through aiosqlite) gets no pool arguments;
SQLAlchemy picks its own pool class for file databases.
"""

from typing import Optional, Tuple

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from studyportal.config import Settings, settings as default_settings


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    All models inherit from this class so they share one metadata object,
    which Alembic and `create_all` use for schema management.
    """
    pass


def create_primary_engine(
    database_url: str,
    connect_timeout: float,
    app_settings: Optional[Settings] = None,
) -> Tuple[AsyncEngine, async_sessionmaker]:
    """
    Build an async engine and session factory for the primary database.

    Args:
        database_url: Async SQLAlchemy URL (postgresql+asyncpg://, sqlite+aiosqlite://)
        connect_timeout: Seconds the driver may spend establishing a connection
        app_settings: Settings to read pool sizing from (defaults to the singleton)

    Returns:
        (engine, session_factory); sessions use expire_on_commit=False so
        attributes stay readable after commit.
    """
    cfg = app_settings or default_settings
    url = make_url(database_url)
    kwargs = {"echo": cfg.log_level == "DEBUG"}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"timeout": connect_timeout}
    else:
        kwargs.update(
            pool_size=cfg.db_pool_size,
            max_overflow=cfg.db_max_overflow,
            pool_pre_ping=cfg.db_pool_pre_ping,
            pool_recycle=3600,
        )
        if url.get_driver_name() == "asyncpg":
            kwargs["connect_args"] = {"timeout": connect_timeout}

    engine = create_async_engine(database_url, **kwargs)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory
