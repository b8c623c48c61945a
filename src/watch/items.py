"""A user's watch-item collection.

Reads and writes ``users/<uid>/movies`` and appends to ``users/<uid>/activity``.
Every save goes through one atomic multi-path update so an item change and
its activity entry land together.
"""

from collections.abc import Iterable, Mapping
from typing import Any

import structlog

from src.config import settings
from src.store.base import BaseTreeStore, join_path
from src.store.keys import now_ms
from src.watch.activity import ActivityEntry, ActivityKind, classify_transition
from src.watch.status import (
    FLAG_KEYS,
    STATUS_KEY,
    TIMES_WATCHED_KEY,
    DisplayStatus,
    WatchItem,
    as_int,
    display_status,
    legacy_status_for,
    reconcile,
    to_in_progress,
    to_watched,
    to_watchlist,
)

logger = structlog.get_logger(__name__)


# =============================================================================
# Exceptions
# =============================================================================


class WatchItemError(Exception):
    """Base exception for collection errors."""

    pass


class ItemNotFoundError(WatchItemError):
    """Raised when an item id does not exist in the collection."""

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Item not found: {item_id}")


class InvalidItemError(WatchItemError):
    """Raised when item data cannot be stored."""

    pass


# =============================================================================
# Helpers
# =============================================================================


def load_items(data: Any) -> list[WatchItem]:
    """Turn a collection subtree into items, newest first.

    Records without a title are ghost nodes left by partial writes and are
    skipped.
    """
    if not isinstance(data, Mapping):
        return []
    items = [
        WatchItem.from_record(record, item_id)
        for item_id, record in data.items()
        if isinstance(record, Mapping) and isinstance(record.get("title"), str) and record["title"]
    ]
    items.sort(key=lambda item: item.added_at or 0, reverse=True)
    return items


def status_breakdown(records: Iterable[WatchItem | Mapping[str, Any]]) -> dict[str, int]:
    """Count items per display label."""
    counts = {status.value: 0 for status in DisplayStatus}
    for record in records:
        flags = record.flags if isinstance(record, WatchItem) else reconcile(record)
        counts[display_status(flags)] += 1
    return counts


# =============================================================================
# Collection
# =============================================================================


class WatchItemCollection:
    """Watch-items owned by one user."""

    def __init__(self, store: BaseTreeStore, user_id: str):
        """Initialize collection.

        Args:
            store: Connected document store
            user_id: Stable user identifier from the auth provider
        """
        self._store = store
        self.user_id = user_id
        self.items_path = join_path("users", user_id, "movies")
        self.activity_path = join_path("users", user_id, "activity")

    def _item_path(self, item_id: str) -> str:
        return join_path(self.items_path, item_id)

    async def _get_record(self, item_id: str) -> dict[str, Any]:
        record = await self._store.get(self._item_path(item_id))
        if not isinstance(record, Mapping):
            raise ItemNotFoundError(item_id)
        return dict(record)

    def _activity_update(
        self, kind: ActivityKind | None, item_id: str, record: Mapping[str, Any], timestamp: int
    ) -> dict[str, Any]:
        if kind is None:
            return {}
        entry = ActivityEntry(
            kind=kind,
            item_id=item_id,
            title=record.get("title"),
            media_type=record.get("type"),
            timestamp=timestamp,
        )
        key = self._store.push_key()
        return {join_path(self.activity_path, key): entry.to_record()}

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    async def list_items(self) -> list[WatchItem]:
        """Get all valid items, newest first."""
        return load_items(await self._store.get(self.items_path))

    async def get_item(self, item_id: str) -> WatchItem:
        """Get one item.

        Raises:
            ItemNotFoundError: If the id does not exist
        """
        return WatchItem.from_record(await self._get_record(item_id), item_id)

    async def list_activity(self, limit: int | None = None) -> list[ActivityEntry]:
        """Get the most recent activity entries, newest first."""
        limit = limit if limit is not None else settings.activity_limit
        data = await self._store.get(self.activity_path)
        if not isinstance(data, Mapping):
            return []
        entries = []
        for entry_id, record in data.items():
            if not isinstance(record, Mapping):
                continue
            entry = ActivityEntry.from_record(entry_id, record)
            if entry is not None:
                entries.append(entry)
        entries.sort(key=lambda entry: (entry.timestamp, entry.id or ""), reverse=True)
        return entries[:limit]

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    async def add_item(self, data: Mapping[str, Any]) -> WatchItem:
        """Add a new item.

        Items arrive on the watchlist unless the data already carries flags or
        a legacy status.

        Raises:
            InvalidItemError: If the data has no title
        """
        title = data.get("title")
        if not isinstance(title, str) or not title.strip():
            raise InvalidItemError("Item must have a title")

        record = dict(data)
        record.pop("id", None)
        flags = reconcile(record)
        record.update(flags.to_record())
        record[STATUS_KEY] = legacy_status_for(flags)
        timestamp = now_ms()
        record["addedAt"] = record.get("addedAt") or timestamp

        item_id = self._store.push_key()
        updates: dict[str, Any] = {self._item_path(item_id): record}
        updates.update(
            self._activity_update(classify_transition(None, record), item_id, record, timestamp)
        )
        await self._store.update(updates)

        logger.info("item_added", user_id=self.user_id, item_id=item_id, title=title)
        return WatchItem.from_record(record, item_id)

    async def update_item(self, item_id: str, patch: Mapping[str, Any]) -> WatchItem:
        """Apply a partial update to an item.

        Keys in ``patch`` are written individually; a ``None`` value deletes
        that field. If the patch touches status flags, the flags it leaves out
        are taken from the reconciled current state and all three are written
        back reconciled, so inProgress and inWatchlist never end up both true.
        Without an explicit ``status`` in the patch, the legacy status is
        rewritten to match the new flags.

        Raises:
            ItemNotFoundError: If the id does not exist
        """
        before = await self._get_record(item_id)
        timestamp = now_ms()

        changes = dict(patch)
        changes.pop("id", None)
        changes["updatedAt"] = timestamp
        if any(key in changes for key in FLAG_KEYS):
            # Patch over the reconciled flags so a legacy status cannot override it
            after = {**before, **reconcile(before).to_record(), **changes}
            flags = reconcile(after)
            changes.update(flags.to_record())
            if STATUS_KEY not in patch:
                changes[STATUS_KEY] = legacy_status_for(flags)
            after.update(changes)
        else:
            after = {**before, **changes}
        after = {key: value for key, value in after.items() if value is not None}

        item_path = self._item_path(item_id)
        updates: dict[str, Any] = {
            join_path(item_path, key): value for key, value in changes.items()
        }
        kind = classify_transition(before, after)
        updates.update(self._activity_update(kind, item_id, after, timestamp))
        await self._store.update(updates)

        logger.info(
            "item_updated",
            user_id=self.user_id,
            item_id=item_id,
            fields=sorted(patch.keys()),
            activity=kind.value if kind else None,
        )
        return WatchItem.from_record(after, item_id)

    async def mark_watchlist(self, item_id: str) -> WatchItem:
        """Queue an item; it stops being in progress, its watched mark stays."""
        before = await self._get_record(item_id)
        return await self.update_item(item_id, to_watchlist(before))

    async def mark_in_progress(self, item_id: str) -> WatchItem:
        """Start an item; it leaves the watchlist, its watched mark stays."""
        before = await self._get_record(item_id)
        return await self.update_item(item_id, to_in_progress(before))

    async def mark_watched(self, item_id: str, times_watched: int | None = None) -> WatchItem:
        """Complete an item.

        Args:
            item_id: Item to complete
            times_watched: New completion count (defaults to one more than now)
        """
        before = await self._get_record(item_id)
        if times_watched is None:
            times_watched = as_int(before.get(TIMES_WATCHED_KEY)) + 1
        patch = to_watched(before, max(1, times_watched))
        if not before.get("completedAt"):
            patch["completedAt"] = now_ms()
        return await self.update_item(item_id, patch)

    async def remove_item(self, item_id: str) -> bool:
        """Delete an item. Returns False if it did not exist."""
        item_path = self._item_path(item_id)
        if not await self._store.exists(item_path):
            return False
        await self._store.remove(item_path)
        logger.info("item_removed", user_id=self.user_id, item_id=item_id)
        return True
