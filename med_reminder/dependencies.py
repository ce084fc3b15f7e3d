"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

import logging

from med_reminder.config import get_settings
from med_reminder.db import DbClient, InMemoryDbClient, MongoDbClient, SqlDbClient

logger = logging.getLogger(__name__)

_db_client: DbClient | None = None


def build_db_client() -> DbClient:
    """Pick a backend from settings: in-memory, then DATABASE_URL, then Mongo."""
    settings = get_settings()
    if settings.use_in_memory_backends:
        logger.info("Using in-memory medication store")
        return InMemoryDbClient()
    if settings.database_url:
        logger.info("Using SQL medication store")
        return SqlDbClient(settings.database_url)
    logger.info("Using MongoDB medication store")
    return MongoDbClient(
        settings.mongo_url,
        collection=settings.mongo_collection,
        timeout_ms=settings.mongo_timeout_ms,
    )


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so every request resolves against the same store.
    """
    global _db_client
    if _db_client:
        return _db_client
    _db_client = build_db_client()
    return _db_client


def reset_db_client() -> None:
    global _db_client
    _db_client = None
