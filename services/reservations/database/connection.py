"""
Database engine and session management for reservation persistence
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker, AsyncEngine
from sqlalchemy.pool import StaticPool

from ..config import DatabaseConfig
from ..logging_adapter import get_safe_logger
from .models import Base

logger = get_safe_logger("reservations.database.connection")


class DatabaseManager:
    """Owns the async engine and hands out sessions"""

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self.config = config or DatabaseConfig()
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None

    async def initialize(self) -> None:
        """Create the engine and make sure the schema exists"""
        engine_kwargs = {"echo": self.config.echo}
        if ":memory:" in self.config.url:
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self.engine = create_async_engine(self.config.url, **engine_kwargs)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("database_initialized", url=self.engine.url.render_as_string(hide_password=True))

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        if self.session_factory is None:
            raise RuntimeError("DatabaseManager.initialize() has not been called")
        async with self.session_factory() as session:
            yield session

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("database_closed")
        self.engine = None
        self.session_factory = None
