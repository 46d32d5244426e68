"""
Database engine and session factory for the result store.

MySQL through aiomysql in production; any SQLAlchemy async URL works
(tests use sqlite+aiosqlite).
"""

import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import Settings
from .models import Base

logger = logging.getLogger(__name__)


def create_engine(settings: Settings) -> AsyncEngine:
    """Async engine with a bounded pool: callers queue for a connection up to the pool timeout"""
    url = make_url(settings.sqlalchemy_url)
    options = {"future": True}

    # SQLite uses its own pool class without size limits
    if not url.drivername.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_timeout=settings.db_pool_timeout,
            pool_pre_ping=True,
            pool_recycle=3600,
        )

    logger.info(f"Connecting to database {url.render_as_string(hide_password=True)}")
    return create_async_engine(url, **options)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


async def create_tables(engine: AsyncEngine) -> None:
    """Create missing tables. Production deployments manage the schema themselves."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
