import asyncio
import logging

from app import models  # noqa: F401 - registers tables on Base.metadata
from app.db.base import Base
from app.db.session import engine

logger = logging.getLogger(__name__)


async def init_db() -> None:
    """
    Create any missing tables directly from the ORM metadata.

    Meant for local SQLite runs; deployed databases are migrated with Alembic.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database schema ensured for %s", engine.url.render_as_string(hide_password=True))


if __name__ == "__main__":
    asyncio.run(init_db())
