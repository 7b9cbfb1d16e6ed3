"""
Async database engine, session factory and declarative base.
"""

from datetime import datetime, timezone
from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from config import async_database_url, settings


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        return {}
    kwargs = {
        "pool_size": max(int(settings.DATABASE_POOL_SIZE), 1),
        "pool_pre_ping": True,
    }
    if settings.DATABASE_SSL:
        kwargs["connect_args"] = {"ssl": "require"}
    return kwargs


DATABASE_URL = async_database_url(settings.DATABASE_URL)

engine = create_async_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))
async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding one session per request."""
    async with async_session_maker() as session:
        yield session


def utcnow() -> datetime:
    """Timezone-aware current time used for Python-side column defaults."""
    return datetime.now(timezone.utc)
