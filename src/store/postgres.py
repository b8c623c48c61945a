"""PostgreSQL document tree backed by asyncpg.

Same leaf-per-row layout as the SQLite backend. The path column uses the
"C" collation so range scans follow byte order.
"""

import json
from collections.abc import Mapping
from typing import Any

import structlog

from src.store.base import (
    BaseTreeStore,
    StoreError,
    StoreNotConnectedError,
    flatten,
    nest,
    normalize_updates,
    split_path,
)
from src.store.sqlite import ancestor_paths, subtree_bounds

logger = structlog.get_logger(__name__)


class PostgresTreeStore(BaseTreeStore):
    """PostgreSQL-based document tree with asyncpg."""

    def __init__(self, database_url: str):
        """Initialize Postgres store.

        Args:
            database_url: PostgreSQL connection URL
        """
        self._database_url = database_url
        self._pool: Any = None

    async def connect(self) -> None:
        """Open database connection pool and initialize schema."""
        import asyncpg

        self._pool = await asyncpg.create_pool(self._database_url, min_size=1, max_size=10)
        await self._apply_migrations()

        logger.debug("postgres_connected")

    async def close(self) -> None:
        """Close database connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.debug("postgres_disconnected")

    @property
    def pool(self) -> Any:
        """Get active connection pool."""
        if self._pool is None:
            raise StoreNotConnectedError()
        return self._pool

    async def _apply_migrations(self) -> None:
        """Apply database migrations."""
        migrations = [
            # Migration 1: Migration bookkeeping
            """
            CREATE TABLE IF NOT EXISTS _migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """,
            # Migration 2: Tree leaves
            """
            CREATE TABLE IF NOT EXISTS tree_nodes (
                path TEXT COLLATE "C" PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
            """,
        ]

        async with self.pool.acquire() as conn:
            await conn.execute(migrations[0])
            current_version = await conn.fetchval(
                "SELECT COALESCE(MAX(version), 0) FROM _migrations"
            )

            for i, sql in enumerate(migrations, 1):
                if i <= current_version:
                    continue
                logger.info("applying_migration", version=i)
                async with conn.transaction():
                    await conn.execute(sql)
                    await conn.execute(
                        "INSERT INTO _migrations (version, name) VALUES ($1, $2) "
                        "ON CONFLICT (version) DO NOTHING",
                        i,
                        f"migration_{i}",
                    )
                logger.info("migration_applied", version=i)

    async def get(self, path: str) -> Any | None:
        segments = split_path(path)
        base = "/".join(segments)

        async with self.pool.acquire() as conn:
            if not segments:
                rows = await conn.fetch("SELECT path, value FROM tree_nodes ORDER BY path")
            else:
                low, high = subtree_bounds(base)
                rows = await conn.fetch(
                    "SELECT path, value FROM tree_nodes "
                    "WHERE path = $1 OR (path > $2 AND path < $3) ORDER BY path",
                    base,
                    low,
                    high,
                )
        if not rows:
            return None

        offset = len(segments)
        return nest([(row["path"].split("/")[offset:], json.loads(row["value"])) for row in rows])

    async def update(self, updates: Mapping[str, Any]) -> None:
        batch = normalize_updates(updates)
        if not batch:
            return

        staged = []
        for segments, value in batch:
            try:
                leaves = [
                    ("/".join(segments + leaf_segments), json.dumps(leaf))
                    for leaf_segments, leaf in flatten(value)
                ]
            except (TypeError, ValueError) as e:
                location = "/".join(segments)
                raise StoreError(f"Value at {location!r} is not JSON-serializable: {e}") from e
            staged.append((segments, leaves))

        try:
            async with self.pool.acquire() as conn, conn.transaction():
                for segments, leaves in staged:
                    base = "/".join(segments)
                    if segments:
                        low, high = subtree_bounds(base)
                        await conn.execute(
                            "DELETE FROM tree_nodes WHERE path = $1 OR (path > $2 AND path < $3)",
                            base,
                            low,
                            high,
                        )
                        ancestors = ancestor_paths(segments)
                        if ancestors and leaves:
                            await conn.execute(
                                "DELETE FROM tree_nodes WHERE path = ANY($1::text[])",
                                ancestors,
                            )
                    else:
                        await conn.execute("DELETE FROM tree_nodes")
                    if leaves:
                        await conn.executemany(
                            "INSERT INTO tree_nodes (path, value) VALUES ($1, $2)",
                            leaves,
                        )
        except StoreNotConnectedError:
            raise
        except Exception as e:
            logger.error(
                "store_update_failed", backend="postgres", paths=len(staged), error=str(e)
            )
            raise StoreError(f"Postgres update failed: {e}") from e

        logger.debug("store_update_applied", backend="postgres", paths=len(batch))
