"""
CQL Instrumentation - Harvest Database Manager

Handles SQLite connection, initialization, and async session management
for harvested metrics.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from pathlib import Path

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .db_models import Base


class MetricsDatabase:
    """
    Async SQLite database manager for harvested metrics.

    The engine is created on first use, so constructing an agent never
    touches the filesystem.
    """

    def __init__(self, db_path: str = "./data/metrics.db"):
        """
        Initialize metrics database.

        Args:
            db_path: Path to SQLite database file (relative or absolute)
        """
        self.db_path = Path(db_path).resolve()
        self.db_url = f"sqlite+aiosqlite:///{self.db_path}"

        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

        self._initialized = False
        self._initialization_lock = asyncio.Lock()

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self._engine = create_async_engine(
                self.db_url,
                echo=False,
                connect_args={"check_same_thread": False},
            )
            self._session_factory = async_sessionmaker(
                self._engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._engine

    async def initialize(self) -> None:
        """
        Initialize database schema.

        Creates all tables if they don't exist. Safe to call multiple times.
        """
        async with self._initialization_lock:
            if self._initialized:
                return

            self.db_path.parent.mkdir(parents=True, exist_ok=True)

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._initialized = True

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get async database session (context manager).

        Usage:
            async with db.get_session() as session:
                await session.execute(...)
                await session.commit()
        """
        if not self._initialized:
            await self.initialize()

        assert self._session_factory is not None
        async with self._session_factory() as session:
            yield session

    async def close(self) -> None:
        """Close database connections gracefully."""
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        self._initialized = False
