import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.core.settings import settings
from app.db.init_db import init_db
from app.db.session import engine

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Starting %s environment=%s kyc_auto_approve=%s",
        app.title,
        settings.environment,
        settings.kyc_auto_approve_enabled,
    )
    if settings.auto_create_schema:
        await init_db()
    try:
        yield
    finally:
        await engine.dispose()
        logger.info("Database engine disposed")
