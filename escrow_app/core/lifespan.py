import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from .asyncio_threads import asyncio_run
from .get_db import Base, async_engine
from .settings import settings

logger = logging.getLogger("startup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Waiting for application startup...")

    if settings.AUTO_CREATE_TABLES:
        try:
            async with async_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables ensured.")
        except Exception:
            logger.exception("Failed to create database tables")

    if not settings.UPSTASH_REDIS_URL:
        logger.warning("Upstash Redis not configured; using the in-process duplicate-submission lock")
    if not settings.WAHA_BASE_URL:
        logger.warning("WAHA_BASE_URL not configured; WhatsApp notifications are disabled")

    logger.info("Application startup complete.")

    yield

    asyncio_run.shutdown()
    await async_engine.dispose()
    logger.info("Database engine disposed.")
