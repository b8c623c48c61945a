"""Watch status reconciliation.

A watch-item's lifecycle is stored as three boolean flags:

- ``inWatchlist``: queued to watch
- ``inProgress``: currently being watched
- ``watched``: completed at least once

Older records carry only a single ``status`` string (``Watchlist``,
``Plan to Watch``, ``Watching``, ``Watched``, ``Completed``). The functions
here turn any mix of the two shapes into canonical flags and build the
patches used to move an item between states.

Rules:
- Only ``inProgress`` and ``inWatchlist`` are mutually exclusive; when both
  end up true, ``inProgress`` wins.
- ``watched`` is independent and survives every watchlist/in-progress change,
  so an item can be ``watched`` and ``inWatchlist`` at once (queued rewatch).
- A record with no data is on the watchlist, not in progress, not watched.

Nothing in this module raises on malformed records; every missing or
unreadable field falls back to its default.
"""

import math
from collections.abc import Mapping
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# =============================================================================
# Constants
# =============================================================================

STATUS_KEY = "status"
IN_WATCHLIST_KEY = "inWatchlist"
IN_PROGRESS_KEY = "inProgress"
WATCHED_KEY = "watched"
TIMES_WATCHED_KEY = "timesWatched"
MEDIA_TYPE_KEY = "type"
EPISODE_COUNT_KEY = "number_of_episodes"
EPISODES_WATCHED_KEY = "episodesWatched"

FLAG_KEYS = (IN_WATCHLIST_KEY, IN_PROGRESS_KEY, WATCHED_KEY)


# =============================================================================
# Enums
# =============================================================================


class LegacyStatus(str, Enum):
    """Single-string status written by older clients."""

    WATCHLIST = "Watchlist"
    PLAN_TO_WATCH = "Plan to Watch"
    WATCHING = "Watching"
    WATCHED = "Watched"
    COMPLETED = "Completed"


class MediaKind(str, Enum):
    """Type of tracked media."""

    MOVIE = "movie"
    TV = "tv"


class DisplayStatus(str, Enum):
    """Label shown for an item; derived from flags only."""

    WATCHING = "Watching"
    WATCHLIST = "Watchlist"
    COMPLETED = "Completed"


class StatusIcon(str, Enum):
    """Icon name matching each display label."""

    WATCHING = "watching"
    WATCHLIST = "watchlist"
    COMPLETED = "completed"


# =============================================================================
# Data Models
# =============================================================================


class WatchFlags(BaseModel):
    """Canonical status flags of a watch-item."""

    model_config = ConfigDict(frozen=True)

    in_watchlist: bool = True
    in_progress: bool = False
    watched: bool = False

    def to_record(self) -> dict[str, bool]:
        """Render flags with their stored key names."""
        return {
            IN_WATCHLIST_KEY: self.in_watchlist,
            IN_PROGRESS_KEY: self.in_progress,
            WATCHED_KEY: self.watched,
        }


class WatchItem(BaseModel):
    """Typed view over a stored watch-item record.

    Records written over the years may carry any subset of these fields, so
    everything is optional. Unknown fields (notes, ratings, cast...) are kept
    as extras and written back untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    id: str | None = None
    title: str | None = None
    legacy_status: str | None = Field(default=None, alias=STATUS_KEY)
    in_watchlist: bool | None = Field(default=None, alias=IN_WATCHLIST_KEY)
    in_progress: bool | None = Field(default=None, alias=IN_PROGRESS_KEY)
    watched: bool | None = Field(default=None, alias=WATCHED_KEY)
    times_watched: int = Field(default=0, alias=TIMES_WATCHED_KEY)
    media_kind: str | None = Field(default=None, alias=MEDIA_TYPE_KEY)
    total_episode_count: int | None = Field(default=None, alias=EPISODE_COUNT_KEY)
    watched_episode_keys: dict[str, Any] = Field(
        default_factory=dict, alias=EPISODES_WATCHED_KEY
    )
    added_at: int | None = Field(default=None, alias="addedAt")
    updated_at: int | None = Field(default=None, alias="updatedAt")
    completed_at: int | None = Field(default=None, alias="completedAt")

    @classmethod
    def from_record(cls, record: Mapping[str, Any], item_id: str | None = None) -> "WatchItem":
        """Normalize a raw record, dropping values that cannot be coerced.

        Args:
            record: Stored record (any era)
            item_id: Key of the record in its collection

        Returns:
            WatchItem with canonical flags filled in
        """
        data = dict(record) if isinstance(record, Mapping) else {}
        flags = reconcile(data)
        data[IN_WATCHLIST_KEY] = flags.in_watchlist
        data[IN_PROGRESS_KEY] = flags.in_progress
        data[WATCHED_KEY] = flags.watched
        data[TIMES_WATCHED_KEY] = max(0, as_int(data.get(TIMES_WATCHED_KEY)))
        data[EPISODE_COUNT_KEY] = as_int(data.get(EPISODE_COUNT_KEY)) or None
        if not isinstance(data.get(EPISODES_WATCHED_KEY), Mapping):
            data[EPISODES_WATCHED_KEY] = {}
        for key in ("addedAt", "updatedAt", "completedAt"):
            if key in data and data[key] is not None:
                data[key] = as_int(data[key]) or None
        if not isinstance(data.get(STATUS_KEY), str):
            data.pop(STATUS_KEY, None)
        if not isinstance(data.get("title"), str):
            data["title"] = None
        if item_id is not None:
            data["id"] = item_id
        elif not isinstance(data.get("id"), str):
            data.pop("id", None)
        return cls.model_validate(data)

    @property
    def flags(self) -> WatchFlags:
        """Canonical flags for this item."""
        return WatchFlags(
            in_watchlist=bool(self.in_watchlist),
            in_progress=bool(self.in_progress),
            watched=bool(self.watched),
        )

    @property
    def display_status(self) -> str:
        """Display label derived from flags."""
        return display_status(self.flags)

    @property
    def is_tv(self) -> bool:
        """Check if the item is a TV show."""
        return self.media_kind == MediaKind.TV.value


# =============================================================================
# Coercion helpers
# =============================================================================


def as_int(value: Any) -> int:
    """Best-effort integer coercion; unreadable values count as 0."""
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except (ValueError, OverflowError):
            return 0
    return 0


def _get(record: Any, key: str) -> Any:
    if isinstance(record, Mapping):
        return record.get(key)
    return None


def _has(record: Any, key: str) -> bool:
    return isinstance(record, Mapping) and key in record


def _count_watched_episodes(episodes: Any) -> int:
    if isinstance(episodes, Mapping):
        return sum(1 for value in episodes.values() if value)
    if isinstance(episodes, (list, tuple)):
        return sum(1 for value in episodes if value)
    return 0


def _flag_value(source: Any, stored_key: str, attr: str) -> bool:
    if isinstance(source, (WatchFlags, WatchItem)):
        return bool(getattr(source, attr))
    return bool(_get(source, stored_key))


# =============================================================================
# Reconciliation
# =============================================================================


def _from_legacy(record: Any) -> WatchFlags:
    """Derive flags from the legacy status string and watch counters."""
    status = _get(record, STATUS_KEY) or LegacyStatus.WATCHLIST.value
    times_watched = as_int(_get(record, TIMES_WATCHED_KEY))

    if status in (LegacyStatus.COMPLETED.value, LegacyStatus.WATCHED.value):
        return WatchFlags(in_watchlist=False, in_progress=False, watched=True)

    if status == LegacyStatus.WATCHING.value:
        # Watching again after an earlier completion keeps the watched mark
        return WatchFlags(in_watchlist=False, in_progress=True, watched=times_watched > 0)

    # Watchlist, Plan to Watch, and anything unrecognized
    watched = times_watched > 0
    if not watched and _get(record, MEDIA_TYPE_KEY) == MediaKind.TV.value:
        total_episodes = as_int(_get(record, EPISODE_COUNT_KEY))
        if total_episodes > 0:
            watched_episodes = _count_watched_episodes(_get(record, EPISODES_WATCHED_KEY))
            watched = watched_episodes >= total_episodes

    return WatchFlags(in_watchlist=True, in_progress=False, watched=watched)


def reconcile(record: Any, force_from_legacy: bool = False) -> WatchFlags:
    """Compute canonical flags for a stored record.

    Args:
        record: Raw record mapping in any schema era
        force_from_legacy: Ignore existing flags and rebuild them from the
            legacy status string (used to repair earlier migrations)

    Returns:
        Flags with inProgress and inWatchlist never both true
    """
    if not force_from_legacy and all(_has(record, key) for key in FLAG_KEYS):
        in_watchlist = bool(_get(record, IN_WATCHLIST_KEY))
        in_progress = bool(_get(record, IN_PROGRESS_KEY))
        watched = bool(_get(record, WATCHED_KEY))
        if in_progress and in_watchlist:
            in_watchlist = False
        return WatchFlags(in_watchlist=in_watchlist, in_progress=in_progress, watched=watched)

    return _from_legacy(record)


def display_status(flags: WatchFlags | WatchItem | Mapping[str, Any]) -> str:
    """Get the display label for a set of flags.

    Priority: inProgress > inWatchlist > watched. No flags at all reads as
    Watchlist, the state of a freshly added item.
    """
    if _flag_value(flags, IN_PROGRESS_KEY, "in_progress"):
        return DisplayStatus.WATCHING.value
    if _flag_value(flags, IN_WATCHLIST_KEY, "in_watchlist"):
        return DisplayStatus.WATCHLIST.value
    if _flag_value(flags, WATCHED_KEY, "watched"):
        return DisplayStatus.COMPLETED.value
    return DisplayStatus.WATCHLIST.value


def legacy_status_for(flags: WatchFlags | Mapping[str, Any]) -> str:
    """Legacy status string written alongside flags for older readers."""
    return display_status(flags)


# =============================================================================
# Predicates for raw records
# =============================================================================


def is_in_watchlist(record: Mapping[str, Any]) -> bool:
    """Check if an item is queued, deriving from legacy data when needed."""
    if _has(record, IN_WATCHLIST_KEY):
        return bool(_get(record, IN_WATCHLIST_KEY))
    return _from_legacy(record).in_watchlist


def is_in_progress(record: Mapping[str, Any]) -> bool:
    """Check if an item is being watched, deriving from legacy data when needed."""
    if _has(record, IN_PROGRESS_KEY):
        return bool(_get(record, IN_PROGRESS_KEY))
    return _from_legacy(record).in_progress


def is_watched(record: Mapping[str, Any]) -> bool:
    """Check if an item was completed at least once."""
    if _has(record, WATCHED_KEY):
        return bool(_get(record, WATCHED_KEY))
    return _from_legacy(record).watched


def status_icon(record: Mapping[str, Any]) -> str:
    """Icon name for a raw record, same priority as the display label."""
    if is_in_progress(record):
        return StatusIcon.WATCHING.value
    if is_in_watchlist(record):
        return StatusIcon.WATCHLIST.value
    if is_watched(record):
        return StatusIcon.COMPLETED.value
    return StatusIcon.WATCHLIST.value


# =============================================================================
# Transitions
# =============================================================================


def to_watchlist(item: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Patch that queues an item; keeps its watched mark.

    The current mark is read with is_watched, so a record holding only a
    legacy status keeps the mark its status and timesWatched imply.
    """
    item = item or {}
    return {
        IN_WATCHLIST_KEY: True,
        IN_PROGRESS_KEY: False,
        WATCHED_KEY: is_watched(item) if item else False,
        STATUS_KEY: LegacyStatus.WATCHLIST.value,
    }


def to_in_progress(item: Mapping[str, Any] | None = None) -> dict[str, Any]:
    """Patch that starts an item; takes it off the watchlist, keeps its watched mark.

    The current mark is read with is_watched, so legacy-only records keep it too.
    """
    item = item or {}
    return {
        IN_WATCHLIST_KEY: False,
        IN_PROGRESS_KEY: True,
        WATCHED_KEY: is_watched(item) if item else False,
        STATUS_KEY: LegacyStatus.WATCHING.value,
    }


def to_watched(item: Mapping[str, Any] | None = None, times_watched: int = 1) -> dict[str, Any]:
    """Patch that completes an item.

    Completion is orthogonal to queueing, so the current watchlist flag is
    kept as is. It is read with is_in_watchlist, so a legacy-only record
    queued under its old status stays queued.
    """
    item = item or {}
    return {
        IN_WATCHLIST_KEY: is_in_watchlist(item) if item else False,
        IN_PROGRESS_KEY: False,
        WATCHED_KEY: True,
        TIMES_WATCHED_KEY: times_watched,
        STATUS_KEY: LegacyStatus.COMPLETED.value,
    }
