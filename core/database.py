"""
Database engine construction with SQLAlchemy async (asyncpg driver)
"""

from typing import Optional
from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def create_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create the connection pool used for a whole import run.

    Statements run in AUTOCOMMIT mode: DDL, TRUNCATE and COPY each commit
    on their own, so a COPY is exactly as atomic as the server makes it.
    The caller owns the engine and must dispose it once.
    """
    url = database_url or settings.DATABASE_URL
    logger.debug(f"Creating database engine (pool_size={settings.DB_POOL_SIZE})")
    return create_async_engine(
        url,
        echo=False,
        isolation_level="AUTOCOMMIT",
        pool_size=settings.DB_POOL_SIZE,
        pool_pre_ping=True,
    )
