"""
FastAPI application entry point for the medication reminder backend.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager, suppress

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from med_reminder.config import get_settings
from med_reminder.db import DbClient, StorageUnavailable
from med_reminder.dependencies import get_db_client
from med_reminder.error_handlers import register_error_handlers
from med_reminder.routes import router

logger = logging.getLogger(__name__)


async def check_store(app: FastAPI) -> bool:
    """Resolve the store and ping it off the event loop, logging the outcome."""
    try:
        db: DbClient = app.dependency_overrides.get(get_db_client, get_db_client)()
        await asyncio.to_thread(db.ping)
    except StorageUnavailable as exc:
        logger.error("Medication store unreachable at startup: %s", exc)
        return False
    except Exception:
        logger.exception("Medication store check failed at startup")
        return False
    logger.info("Medication store connected")
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    # The listener must come up even when the store is down.
    task = asyncio.create_task(check_store(app))
    yield
    if not task.done():
        task.cancel()
    with suppress(asyncio.CancelledError):
        await task


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Medication Reminder Backend", version="0.1.0", lifespan=lifespan
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router, prefix=settings.api_prefix)
    register_error_handlers(app)
    return app
