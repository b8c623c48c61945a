"""Bulk migration of a user's collection to status flags.

Every item is rebuilt from its legacy ``status`` string, then all items are
written back in a single atomic multi-path update. Re-running the migration
is safe: the output depends only on the legacy data, so a second run writes
the same flags again.
"""

from typing import Any

import structlog
from pydantic import BaseModel

from src.store.base import BaseTreeStore, join_path
from src.store.keys import now_ms
from src.watch.status import (
    IN_PROGRESS_KEY,
    IN_WATCHLIST_KEY,
    STATUS_KEY,
    WATCHED_KEY,
    legacy_status_for,
    reconcile,
)

logger = structlog.get_logger(__name__)


class MigrationResult(BaseModel):
    """Outcome of a batch migration, shown to the user as is."""

    success: bool
    migrated_count: int = 0
    message: str


def items_path(user_id: str) -> str:
    """Path of a user's watch-item collection."""
    return join_path("users", user_id, "movies")


def build_migration_updates(
    user_id: str,
    items: dict[str, Any],
    force: bool = True,
    timestamp: int | None = None,
) -> dict[str, Any]:
    """Stage per-item flag writes for one atomic update.

    Args:
        user_id: Owner of the collection
        items: Mapping of item id to stored record
        force: Rebuild flags from the legacy status even if flags exist
        timestamp: updatedAt value (defaults to now)

    Returns:
        Mapping of fully-qualified path to value
    """
    updated_at = timestamp if timestamp is not None else now_ms()
    base = items_path(user_id)
    updates: dict[str, Any] = {}

    for item_id, record in items.items():
        flags = reconcile(record if isinstance(record, dict) else {}, force_from_legacy=force)
        prefix = f"{base}/{item_id}"
        updates[f"{prefix}/{IN_WATCHLIST_KEY}"] = flags.in_watchlist
        updates[f"{prefix}/{IN_PROGRESS_KEY}"] = flags.in_progress
        updates[f"{prefix}/{WATCHED_KEY}"] = flags.watched
        updates[f"{prefix}/updatedAt"] = updated_at
        updates[f"{prefix}/{STATUS_KEY}"] = legacy_status_for(flags)

    return updates


async def batch_migrate(
    user_id: str,
    store: BaseTreeStore,
    force: bool = True,
) -> MigrationResult:
    """Migrate every item of a user to status flags.

    Args:
        user_id: Owner of the collection
        store: Document store holding ``users/<uid>/movies``
        force: Rebuild flags from the legacy status even for items that were
            already migrated, repairing earlier incorrect migrations

    Returns:
        MigrationResult; store failures are reported, never raised
    """
    log = logger.bind(user_id=user_id, force=force)
    log.info("migration_started")
    try:
        items = await store.get(items_path(user_id))
        if not items or not isinstance(items, dict):
            log.info("migration_skipped_empty")
            return MigrationResult(success=True, migrated_count=0, message="No movies to migrate")

        updates = build_migration_updates(user_id, items, force=force)
        migrated_count = len(items)

        await store.update(updates)

        log.info("migration_completed", migrated_count=migrated_count)
        plural = "s" if migrated_count != 1 else ""
        return MigrationResult(
            success=True,
            migrated_count=migrated_count,
            message=f"Successfully migrated {migrated_count} movie{plural}",
        )
    except Exception as e:
        log.exception("migration_failed", error=str(e))
        return MigrationResult(
            success=False,
            migrated_count=0,
            message=f"Migration failed: {e}",
        )


async def migrate_users(
    user_ids: list[str],
    store: BaseTreeStore,
    force: bool = True,
) -> dict[str, MigrationResult]:
    """Run batch_migrate for several users, one atomic write each.

    A failure for one user does not stop the others.
    """
    results: dict[str, MigrationResult] = {}
    for user_id in user_ids:
        results[user_id] = await batch_migrate(user_id, store, force=force)
    failed = sum(1 for result in results.values() if not result.success)
    logger.info("migration_run_finished", users=len(user_ids), failed=failed)
    return results
