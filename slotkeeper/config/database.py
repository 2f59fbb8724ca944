"""Database configuration and connection setup"""
import logging
from typing import Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from slotkeeper.config.settings import get_settings

logger = logging.getLogger(__name__)


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine with connection pooling"""
    settings = get_settings()
    url = make_url(database_url or settings.DATABASE_URL)

    engine_kwargs = {"pool_pre_ping": True, "echo": False}
    if url.get_backend_name() != "sqlite":
        # SQLite uses its own pool classes that take no sizing arguments
        engine_kwargs["pool_size"] = settings.DB_POOL_SIZE
        engine_kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW

    return create_async_engine(url, **engine_kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Objects stay usable after commit; repositories hand them back detached
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def get_engine() -> AsyncEngine:
    """Get or create the process-wide engine"""
    global _engine
    if _engine is None:
        _engine = create_engine()
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the process-wide session factory"""
    global _session_factory
    if _session_factory is None:
        _session_factory = create_session_factory(get_engine())
    return _session_factory


async def create_tables(engine: Optional[AsyncEngine] = None) -> None:
    """Create all tables known to the ORM metadata (development and tests)"""
    from slotkeeper.models import Base

    engine = engine or get_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
