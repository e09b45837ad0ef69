"""Async database engine, session factory and dialect helpers."""

from collections.abc import AsyncGenerator
from typing import Any

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from chatorder.core.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=False,
    future=True,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a database session for a request."""
    async with async_session_maker() as session:
        yield session


def upsert_insert(session: AsyncSession, model: Any) -> Any:
    """Return a dialect-specific INSERT supporting ``on_conflict_do_*``.

    PostgreSQL in production, SQLite in the test suite. Both dialects expose
    the same ``on_conflict_do_update(index_elements=..., set_=...)`` and
    ``excluded`` API.
    """
    dialect = session.get_bind().dialect.name
    if dialect == "sqlite":
        return sqlite_insert(model)
    return pg_insert(model)
