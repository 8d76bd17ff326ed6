"""
Database layer — async SQLAlchemy 2.0 engine + session factory.

Provides:
    • Async engine and session factory, built on demand
    • Base model for ORM entities
    • Table creation / engine disposal for the app lifespan

The engine is only created when the SQL marker store is selected, so
the in-memory deployment never needs a database driver installed.

Usage:
    from safety_backend.app.core.database import Database

    db = Database("postgresql+asyncpg://...")
    await db.init_models()
    async with db.session() as session:
        ...
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class Database:
    """Owns one async engine and its session factory."""

    def __init__(self, url: str, *, echo: bool = False):
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, future=True)
        self._session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session that commits on success and rolls back on error."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_models(self) -> None:
        """Create all tables (dev/test only — use migrations in production)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database tables initialised")

    async def close(self) -> None:
        """Dispose engine connections."""
        await self.engine.dispose()
        logger.info("Database connections closed")

    @property
    def safe_url(self) -> str:
        """URL with credentials stripped, for logs and health output."""
        return self.url.split("@")[-1]

