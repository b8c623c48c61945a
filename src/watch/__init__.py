"""Watch-item status model, migration, activity log and collection.

The status functions are pure and safe to call on any stored record; the
collection and migration modules talk to the document store.
"""

from src.watch.activity import (
    ACTIVITY_RULES,
    ActivityEntry,
    ActivityKind,
    ActivityRule,
    classify_transition,
)
from src.watch.items import (
    InvalidItemError,
    ItemNotFoundError,
    WatchItemCollection,
    WatchItemError,
    load_items,
    status_breakdown,
)
from src.watch.migration import (
    MigrationResult,
    batch_migrate,
    build_migration_updates,
    migrate_users,
)
from src.watch.status import (
    DisplayStatus,
    LegacyStatus,
    MediaKind,
    WatchFlags,
    WatchItem,
    display_status,
    is_in_progress,
    is_in_watchlist,
    is_watched,
    legacy_status_for,
    reconcile,
    status_icon,
    to_in_progress,
    to_watched,
    to_watchlist,
)

__all__ = [
    # Status model
    "DisplayStatus",
    "LegacyStatus",
    "MediaKind",
    "WatchFlags",
    "WatchItem",
    "display_status",
    "is_in_progress",
    "is_in_watchlist",
    "is_watched",
    "legacy_status_for",
    "reconcile",
    "status_icon",
    "to_in_progress",
    "to_watched",
    "to_watchlist",
    # Migration
    "MigrationResult",
    "batch_migrate",
    "build_migration_updates",
    "migrate_users",
    # Activity
    "ACTIVITY_RULES",
    "ActivityEntry",
    "ActivityKind",
    "ActivityRule",
    "classify_transition",
    # Collection
    "InvalidItemError",
    "ItemNotFoundError",
    "WatchItemCollection",
    "WatchItemError",
    "load_items",
    "status_breakdown",
]
