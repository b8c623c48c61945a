"""Activity log entries for status changes.

Which entry a save produces is decided by an ordered rule table: each rule is
a predicate over the item before and after the change, and the first match
wins. The table lives here rather than in the status module because the log
is an audit trail for the feed, not part of the status model.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel

from src.watch.status import TIMES_WATCHED_KEY, WatchFlags, as_int, reconcile


class ActivityKind(str, Enum):
    """Kind of activity shown in the feed."""

    REWATCHED = "rewatched"
    COMPLETED = "completed"
    STARTED = "started"
    QUEUED = "queued"


@dataclass(frozen=True)
class Transition:
    """Item state before and after one save."""

    before: WatchFlags
    after: WatchFlags
    times_before: int
    times_after: int

    @classmethod
    def between(cls, before: Mapping[str, Any] | None, after: Mapping[str, Any]) -> "Transition":
        """Build a transition from two raw records.

        A missing ``before`` means the item is new; it then starts from all
        flags off so adding to the watchlist registers as a change.
        """
        if before is None:
            start = WatchFlags(in_watchlist=False, in_progress=False, watched=False)
            times_before = 0
        else:
            start = reconcile(before)
            times_before = as_int(before.get(TIMES_WATCHED_KEY))
        return cls(
            before=start,
            after=reconcile(after),
            times_before=times_before,
            times_after=as_int(after.get(TIMES_WATCHED_KEY)),
        )


@dataclass(frozen=True)
class ActivityRule:
    """One row of the rule table."""

    kind: ActivityKind
    matches: Callable[[Transition], bool]


ACTIVITY_RULES: tuple[ActivityRule, ...] = (
    ActivityRule(
        ActivityKind.REWATCHED,
        lambda t: t.before.watched and t.after.watched and t.times_after > t.times_before,
    ),
    ActivityRule(
        ActivityKind.COMPLETED,
        lambda t: t.after.watched and not t.before.watched,
    ),
    ActivityRule(
        ActivityKind.STARTED,
        lambda t: t.after.in_progress and not t.before.in_progress,
    ),
    ActivityRule(
        ActivityKind.QUEUED,
        lambda t: t.after.in_watchlist and not t.before.in_watchlist,
    ),
)


def classify_transition(
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any],
    rules: tuple[ActivityRule, ...] = ACTIVITY_RULES,
) -> ActivityKind | None:
    """Return the kind of the first rule matching a change, if any."""
    transition = Transition.between(before, after)
    for rule in rules:
        if rule.matches(transition):
            return rule.kind
    return None


class ActivityEntry(BaseModel):
    """One entry of ``users/<uid>/activity``."""

    id: str | None = None
    kind: ActivityKind
    item_id: str
    title: str | None = None
    media_type: str | None = None
    timestamp: int

    def to_record(self) -> dict[str, Any]:
        """Render with stored key names."""
        return {
            "type": self.kind.value,
            "movieId": self.item_id,
            "title": self.title,
            "mediaType": self.media_type,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_record(cls, entry_id: str, record: Mapping[str, Any]) -> "ActivityEntry | None":
        """Parse a stored entry; returns None for entries this version cannot read."""
        try:
            kind = ActivityKind(record.get("type"))
        except ValueError:
            return None
        title = record.get("title")
        media_type = record.get("mediaType")
        return cls(
            id=entry_id,
            kind=kind,
            item_id=str(record.get("movieId") or ""),
            title=title if isinstance(title, str) else None,
            media_type=media_type if isinstance(media_type, str) else None,
            timestamp=as_int(record.get("timestamp")),
        )
