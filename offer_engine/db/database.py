"""
Database Connection
===================
Async connection using SQLAlchemy, configured from DB_* settings
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine,
)

from offer_engine.config import DatabaseSettings, get_database_settings
from offer_engine.db.models import Base

logger = logging.getLogger(__name__)


def create_engine(settings: Optional[DatabaseSettings] = None) -> AsyncEngine:
    settings = settings or get_database_settings()
    return create_async_engine(
        settings.url,
        echo=settings.echo_sql,
        connect_args=settings.get_connect_args(),
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def init_db(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables (for development only - use migrations in production)"""
    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
