"""
Async database engine and session management.

The engine is created lazily from Settings.database_url the first time a
session is requested.
"""

import logging
import threading
from typing import AsyncIterator, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import get_settings
from .errors import StorefrontError
from .models import Base

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None
_engine_lock = threading.Lock()


def get_engine() -> AsyncEngine:
    """Get or create the process-wide async engine."""
    global _engine, _session_factory
    if _engine is None:
        with _engine_lock:
            if _engine is None:
                url = get_settings().database_url
                _engine = create_async_engine(url, echo=False)
                _session_factory = async_sessionmaker(
                    _engine, class_=AsyncSession, expire_on_commit=False
                )
                logger.info("Database engine created for %s", _engine.url.render_as_string(hide_password=True))
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    get_engine()
    assert _session_factory is not None
    return _session_factory


async def init_db() -> None:
    """Create all tables that do not exist yet."""
    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    """Close pooled connections and forget the engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: one session per request, committed on success."""
    async with get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def commit_or_fail(session: AsyncSession, message: str) -> None:
    """Commit before the response is built; the exit commit in get_db runs after it is sent."""
    try:
        await session.commit()
    except SQLAlchemyError as e:
        logger.error("Commit failed: %s", e)
        raise StorefrontError(message) from e
