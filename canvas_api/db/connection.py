"""
Database connection management

Postgres (Neon / Supabase) through SQLAlchemy asyncio + asyncpg. The engine
is created lazily on first use so the API starts without DATABASE_URL; only
the routes that touch the database fail when it is missing.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, List, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy import inspect, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from ..config import get_settings
from ..errors import ServerMisconfiguredError

logger = logging.getLogger(__name__)

Base = declarative_base()


def normalize_database_url(url: str) -> str:
    """
    Rewrite a provider URL for asyncpg

    postgres:// and postgresql:// get the +asyncpg driver, and libpq's
    sslmode=... becomes asyncpg's ssl=...; other query parameters are kept.
    """
    parts = urlsplit(url)
    scheme = parts.scheme
    if scheme in ("postgres", "postgresql"):
        scheme = "postgresql+asyncpg"

    query = []
    for key, value in parse_qsl(parts.query, keep_blank_values=True):
        if key == "sslmode":
            query.append(("ssl", value))
        elif key == "channel_binding":
            # libpq only
            continue
        else:
            query.append((key, value))
    return urlunsplit((scheme, parts.netloc, parts.path, urlencode(query), parts.fragment))


class Database:
    """Engine + session factory for one database URL"""

    def __init__(self, url: str, pool_size: int = 5):
        self.url = normalize_database_url(url)
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            echo=False,
            pool_size=pool_size,
            max_overflow=pool_size * 2,
            pool_pre_ping=True,
            pool_recycle=1800,
            connect_args={
                "server_settings": {"application_name": "canvas_api"},
                "command_timeout": 10,
            },
        )
        self.sessionmaker = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session committed on success, rolled back on error"""
        async with self.sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def current_time(self) -> datetime:
        async with self.engine.connect() as conn:
            result = await conn.execute(text("SELECT NOW()"))
            return result.scalar_one()

    async def list_tables(self) -> List[str]:
        async with self.engine.connect() as conn:
            return await conn.run_sync(lambda sync_conn: inspect(sync_conn).get_table_names())

    async def create_all(self) -> List[str]:
        """Create the missing tables, return the ones defined by the models"""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema created")
        return list(Base.metadata.tables.keys())

    async def dispose(self):
        await self.engine.dispose()


_database: Optional[Database] = None


def get_database() -> Database:
    """
    Process-wide Database

    Raises:
        ServerMisconfiguredError: DATABASE_URL is not set
    """
    global _database
    if _database is None:
        settings = get_settings()
        if not settings.DATABASE_URL:
            logger.error("DATABASE_URL is not configured")
            raise ServerMisconfiguredError(
                "Database non configurato",
                details="DATABASE_URL not set",
            )
        _database = Database(settings.DATABASE_URL, pool_size=settings.DATABASE_POOL_SIZE)
    return _database


async def close_database():
    """Dispose the engine (app shutdown)"""
    global _database
    if _database is not None:
        await _database.dispose()
        _database = None
