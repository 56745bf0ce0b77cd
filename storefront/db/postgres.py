"""Async SQLAlchemy engine and session factory for the platform directory.

The directory database maps public store labels to internal tenant ids.
Tenant data itself never lives here; see ``storefront.db.tenant``.
Connection errors are caught and re-raised as ConnectivityError
so the API layer receives a typed, structured error.
"""

from collections.abc import AsyncGenerator

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from storefront.core.config import settings
from storefront.core.exceptions import ConnectivityError

logger = structlog.get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for platform directory models."""
    pass


engine: AsyncEngine = create_async_engine(
    settings.main_database_url,
    echo=False,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a directory database session.

    Commits on success, rolls back on exception, always closes.
    SQLAlchemy driver errors are caught and re-raised as ConnectivityError.
    """
    try:
        async with async_session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("directory_session_error", error=str(e))
                raise ConnectivityError() from e
            except Exception:
                await session.rollback()
                raise
    except ConnectivityError:
        raise
    except (SQLAlchemyError, OSError) as e:
        logger.error("directory_connection_error", error=str(e))
        raise ConnectivityError() from e


async def close_postgres() -> None:
    """Gracefully dispose of the directory engine connection pool."""
    logger.info("directory_db_shutdown")
    await engine.dispose()
