"""
AFFILIFY - Async Database Engine & Session
Uses SQLAlchemy 2.0 async (asyncpg in production, aiosqlite in tests).
"""
from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from affilify.config import Settings


# ── Declarative Base ──
class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# ── Engine ──
def create_engine(settings: Settings) -> AsyncEngine:
    """Build the async engine for ``settings.DATABASE_URL``."""
    options = {"echo": settings.DEBUG, "pool_pre_ping": True}
    if not settings.DATABASE_URL.startswith("sqlite"):
        options.update(pool_size=5, max_overflow=10)
    return create_async_engine(settings.DATABASE_URL, **options)


# ── Session Factory ──
def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── Dependency ──
async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """FastAPI dependency - yields an async DB session from the app's factory."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
