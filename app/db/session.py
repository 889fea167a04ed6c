from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.settings import settings
from app.db.url import normalize_database_url

engine = create_async_engine(normalize_database_url(settings.database_url), echo=settings.sql_echo)

# Services only flush; whoever opens the session owns the commit.
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async with AsyncSessionLocal() as session:
        yield session


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker = AsyncSessionLocal, *, commit: bool = True
) -> AsyncGenerator[AsyncSession, None]:
    """One unit of work for jobs outside a request: commit on success, roll back on error."""
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        if commit:
            await session.commit()
        else:
            await session.rollback()
