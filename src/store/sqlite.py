"""SQLite document tree backed by aiosqlite.

Every leaf of the tree is one row keyed by its full path, with the value
JSON-encoded. Reading a subtree is a range scan over the primary key; a
batch write is one transaction.
"""

import asyncio
import json
from collections.abc import Mapping
from datetime import UTC, datetime
from pathlib import Path
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

logger = structlog.get_logger(__name__)


def subtree_bounds(path: str) -> tuple[str, str]:
    """Exclusive key range covering every descendant of a path.

    ``/`` sorts directly before ``0``, so ``path/`` < descendant < ``path0``.
    """
    return f"{path}/", f"{path}0"


def ancestor_paths(segments: list[str]) -> list[str]:
    """Proper ancestors of a path, nearest last."""
    return ["/".join(segments[:i]) for i in range(1, len(segments))]


class SQLiteTreeStore(BaseTreeStore):
    """SQLite-based document tree."""

    def __init__(self, db_path: str | Path):
        """Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._db: Any = None
        self._lock = asyncio.Lock()

    async def connect(self) -> None:
        """Open database connection and initialize schema."""
        import aiosqlite

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row

        await self._apply_migrations()

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> Any:
        """Get active database connection."""
        if self._db is None:
            raise StoreNotConnectedError()
        return self._db

    async def _apply_migrations(self) -> None:
        """Apply database migrations."""
        migrations = [
            # Migration 1: Migration bookkeeping
            """
            CREATE TABLE IF NOT EXISTS _migrations (
                version INTEGER PRIMARY KEY,
                name TEXT NOT NULL,
                applied_at TEXT NOT NULL
            );
            """,
            # Migration 2: Tree leaves
            """
            CREATE TABLE IF NOT EXISTS tree_nodes (
                path TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );
            """,
        ]

        cursor = await self.db.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='_migrations'"
        )
        if await cursor.fetchone() is None:
            current_version = 0
        else:
            cursor = await self.db.execute("SELECT MAX(version) FROM _migrations")
            row = await cursor.fetchone()
            current_version = row[0] if row and row[0] else 0

        for i, sql in enumerate(migrations, 1):
            if i <= current_version:
                continue

            logger.info("applying_migration", version=i)
            await self.db.executescript(sql)
            await self.db.execute(
                "INSERT OR IGNORE INTO _migrations (version, name, applied_at) VALUES (?, ?, ?)",
                (i, f"migration_{i}", datetime.now(UTC).isoformat()),
            )
            await self.db.commit()
            logger.info("migration_applied", version=i)

    async def get(self, path: str) -> Any | None:
        segments = split_path(path)
        base = "/".join(segments)

        # Reads share the connection with open batches; wait for them to commit
        async with self._lock:
            if not segments:
                cursor = await self.db.execute("SELECT path, value FROM tree_nodes ORDER BY path")
            else:
                low, high = subtree_bounds(base)
                cursor = await self.db.execute(
                    "SELECT path, value FROM tree_nodes WHERE path = ? OR (path > ? AND path < ?) "
                    "ORDER BY path",
                    (base, low, high),
                )
            rows = await cursor.fetchall()
        if not rows:
            return None

        offset = len(segments)
        return nest([(row["path"].split("/")[offset:], json.loads(row["value"])) for row in rows])

    async def update(self, updates: Mapping[str, Any]) -> None:
        batch = normalize_updates(updates)
        if not batch:
            return

        # Encode before touching the database so bad values fail early
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

        now = datetime.now(UTC).isoformat()
        async with self._lock:
            await self._apply_batch(staged, now)

        logger.debug("store_update_applied", backend="sqlite", paths=len(batch))

    async def _apply_batch(
        self, staged: list[tuple[list[str], list[tuple[str, str]]]], now: str
    ) -> None:
        try:
            for segments, leaves in staged:
                base = "/".join(segments)
                if segments:
                    low, high = subtree_bounds(base)
                    await self.db.execute(
                        "DELETE FROM tree_nodes WHERE path = ? OR (path > ? AND path < ?)",
                        (base, low, high),
                    )
                    ancestors = ancestor_paths(segments)
                    if ancestors and leaves:
                        placeholders = ",".join("?" for _ in ancestors)
                        await self.db.execute(
                            f"DELETE FROM tree_nodes WHERE path IN ({placeholders})",
                            ancestors,
                        )
                else:
                    await self.db.execute("DELETE FROM tree_nodes")
                await self.db.executemany(
                    "INSERT INTO tree_nodes (path, value, updated_at) VALUES (?, ?, ?)",
                    [(leaf_path, encoded, now) for leaf_path, encoded in leaves],
                )
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "store_update_failed", backend="sqlite", paths=len(staged), error=str(e)
            )
            raise StoreError(f"SQLite update failed: {e}") from e
