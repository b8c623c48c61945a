"""Public profile and shelf reads with an explicit cache.

Friends' profiles and shelves are read far more often than they change, so
reads go through a TTLCache. The cache is an object the caller creates and
passes in, which keeps its lifetime and eviction under the caller's control.
"""

import copy
import time
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, Field

from src.config import settings
from src.store.base import BaseTreeStore, join_path
from src.watch.items import load_items

logger = structlog.get_logger(__name__)

_MISSING = object()


class TTLCache:
    """In-memory cache with per-entry TTL.

    Unlike a plain dict lookup, a cached ``None`` is a hit: a profile that
    does not exist is remembered as missing until the entry expires.
    """

    def __init__(self, ttl: int | None = None):
        """Initialize cache.

        Args:
            ttl: Time-to-live in seconds. Uses settings.cache_ttl if None.
        """
        self._cache: dict[str, tuple[Any, float]] = {}
        self._ttl = ttl if ttl is not None else settings.cache_ttl

    def __contains__(self, key: str) -> bool:
        return self.get(key, _MISSING) is not _MISSING

    def __len__(self) -> int:
        return len(self._cache)

    def get(self, key: str, default: Any = None) -> Any:
        """Get value from cache if not expired.

        Args:
            key: Cache key
            default: Returned when the key is absent or expired

        Returns:
            Cached value or default
        """
        if key not in self._cache:
            return default

        value, timestamp = self._cache[key]
        if time.time() - timestamp > self._ttl:
            del self._cache[key]
            return default

        return value

    def set(self, key: str, value: Any) -> None:
        """Set value in cache."""
        self._cache[key] = (value, time.time())

    def invalidate(self, key: str) -> None:
        """Drop one entry."""
        self._cache.pop(key, None)

    def clear(self) -> None:
        """Clear all cached values."""
        self._cache.clear()

    def cleanup_expired(self) -> int:
        """Remove expired entries from cache.

        Returns:
            Number of entries removed
        """
        now = time.time()
        expired = [k for k, (_, t) in self._cache.items() if now - t > self._ttl]
        for key in expired:
            del self._cache[key]
        return len(expired)


class PublicProfile(BaseModel):
    """Public part of ``users/<uid>/profile``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: str
    username: str | None = None
    display_name: str | None = Field(default=None, alias="displayName")
    pfp: str | None = None

    @property
    def label(self) -> str:
        """Name to show for the user."""
        if self.display_name:
            return self.display_name
        if self.username:
            return f"@{self.username}"
        return "New User"


class ProfileReader:
    """Cached reads of other users' profiles and shelves."""

    def __init__(self, store: BaseTreeStore, cache: TTLCache | None = None):
        """Initialize reader.

        Args:
            store: Connected document store
            cache: Shared cache; a private one is created if omitted
        """
        self._store = store
        self._cache = cache if cache is not None else TTLCache()

    async def get_profile(self, user_id: str) -> PublicProfile | None:
        """Get a user's public profile, or None if they have none."""
        key = f"profile:{user_id}"
        if key in self._cache:
            return self._cache.get(key)

        data = await self._store.get(join_path("users", user_id, "profile"))
        profile = None
        if isinstance(data, dict):
            fields = {k: v for k, v in data.items() if isinstance(v, str)}
            profile = PublicProfile.model_validate({**fields, "user_id": user_id})
        self._cache.set(key, profile)
        logger.debug("profile_loaded", user_id=user_id, found=profile is not None)
        return profile

    async def get_public_items(self, user_id: str) -> list[dict[str, Any]]:
        """Get a user's shelf, newest first, with reconciled flags.

        Each record carries a ``displayStatus`` label so viewers never need
        to interpret legacy status strings themselves. Callers get their own
        copy of the cached shelf.
        """
        key = f"items:{user_id}"
        if key in self._cache:
            return copy.deepcopy(self._cache.get(key))

        items = load_items(await self._store.get(join_path("users", user_id, "movies")))
        shelf = []
        for item in items:
            record = item.model_dump(by_alias=True, exclude_none=True)
            record["displayStatus"] = item.display_status
            shelf.append(record)
        self._cache.set(key, shelf)
        logger.debug("public_items_loaded", user_id=user_id, count=len(shelf))
        return copy.deepcopy(shelf)

    async def resolve_username(self, username: str) -> str | None:
        """Map a username to its user id via ``usernames/<name>``."""
        key = f"username:{username}"
        if key in self._cache:
            return self._cache.get(key)

        user_id = await self._store.get(join_path("usernames", username))
        resolved = user_id if isinstance(user_id, str) else None
        self._cache.set(key, resolved)
        return resolved

    def refresh(self, user_id: str) -> None:
        """Forget cached data for a user."""
        self._cache.invalidate(f"profile:{user_id}")
        self._cache.invalidate(f"items:{user_id}")
