"""Path-addressed document store.

Backends: in-memory (tests), SQLite (local fallback), Postgres (production).

Usage:
    async with get_store() as store:
        movies = await store.get(f"users/{uid}/movies")
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog

from src.store.base import (
    BaseTreeStore,
    InvalidPathError,
    StoreError,
    StoreNotConnectedError,
    join_path,
    split_path,
)
from src.store.keys import generate_push_key, now_ms
from src.store.memory import MemoryTreeStore
from src.store.postgres import PostgresTreeStore
from src.store.sqlite import SQLiteTreeStore

logger = structlog.get_logger(__name__)


def get_store_backend(
    database_url: str | None = None,
    db_path: str | Path = "data/reelshelf.db",
) -> BaseTreeStore:
    """Get the appropriate store backend.

    Args:
        database_url: PostgreSQL connection URL (if set, uses Postgres)
        db_path: Path to SQLite database (fallback if no database_url)

    Returns:
        Either PostgresTreeStore or SQLiteTreeStore instance
    """
    if database_url:
        logger.info("using_postgres_store")
        return PostgresTreeStore(database_url)
    logger.info("using_sqlite_store", db_path=str(db_path))
    return SQLiteTreeStore(db_path)


@asynccontextmanager
async def get_store() -> AsyncIterator[BaseTreeStore]:
    """Get a connected store with the backend picked from settings.

    Yields:
        Store instance (Postgres when DATABASE_URL is set, otherwise SQLite)
    """
    from src.config import settings

    database_url = None
    if settings.database_url:
        database_url = settings.database_url.get_secret_value()

    store = get_store_backend(database_url, settings.database_path)
    async with store:
        yield store


__all__ = [
    # Backends
    "BaseTreeStore",
    "MemoryTreeStore",
    "PostgresTreeStore",
    "SQLiteTreeStore",
    # Factory functions
    "get_store",
    "get_store_backend",
    # Paths and keys
    "generate_push_key",
    "join_path",
    "now_ms",
    "split_path",
    # Errors
    "InvalidPathError",
    "StoreError",
    "StoreNotConnectedError",
]
