"""Abstract path-addressed document store.

Data lives in one tree addressed by slash-delimited paths
(``users/<uid>/movies/<itemId>/title``). Backends support two primitives:

- reading everything at or below a path as a nested mapping
- applying a batch of ``path -> value`` writes atomically, where ``None``
  deletes the path and its children

Everything else (``set``, ``remove``, ``push_key``) is built on those two.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator, Mapping
from typing import Any

import structlog

from src.store.keys import generate_push_key

logger = structlog.get_logger(__name__)

FORBIDDEN_KEY_CHARS = set(".#$[]")


# =============================================================================
# Exceptions
# =============================================================================


class StoreError(Exception):
    """Base exception for document store errors."""

    pass


class InvalidPathError(StoreError):
    """Raised when a path is malformed or a batch contains overlapping paths."""

    pass


class StoreNotConnectedError(StoreError):
    """Raised when the store is used before connect()."""

    def __init__(self) -> None:
        super().__init__("Store not connected. Use 'async with' or call connect()")


# =============================================================================
# Path helpers
# =============================================================================


def split_path(path: str) -> list[str]:
    """Split a path into its segments.

    Leading and trailing slashes are ignored; ``""`` and ``"/"`` address the
    root.

    Raises:
        InvalidPathError: On empty inner segments or forbidden characters
    """
    if not isinstance(path, str):
        raise InvalidPathError(f"Path must be a string, got {type(path).__name__}")
    stripped = path.strip("/")
    if not stripped:
        return []
    segments = stripped.split("/")
    for segment in segments:
        if not segment:
            raise InvalidPathError(f"Empty segment in path: {path!r}")
        if FORBIDDEN_KEY_CHARS & set(segment):
            raise InvalidPathError(f"Forbidden character in path segment {segment!r}")
    return segments


def join_path(*parts: str) -> str:
    """Join path parts with slashes, normalizing stray separators."""
    segments: list[str] = []
    for part in parts:
        segments.extend(split_path(str(part)))
    return "/".join(segments)


def normalize_updates(updates: Mapping[str, Any]) -> list[tuple[list[str], Any]]:
    """Validate a multi-path batch.

    Returns:
        List of (segments, value) pairs in input order

    Raises:
        InvalidPathError: If a path is malformed or one path is an ancestor
            of another in the same batch
    """
    normalized = [(split_path(path), value) for path, value in updates.items()]
    for segments, value in normalized:
        if not segments and value is not None and not isinstance(value, Mapping):
            raise InvalidPathError("Cannot store a bare value at the tree root")
    joined = sorted("/".join(segments) for segments, _ in normalized)
    for i in range(len(joined) - 1):
        current, following = joined[i], joined[i + 1]
        if current == following:
            raise InvalidPathError(f"Duplicate path in update: {current!r}")
        if current == "" or following.startswith(current + "/"):
            raise InvalidPathError(
                f"Path {current!r} is an ancestor of {following!r} in the same update"
            )
    return normalized


def flatten(value: Any, prefix: list[str] | None = None) -> Iterator[tuple[list[str], Any]]:
    """Yield (segments, leaf) pairs for a value.

    Mappings are walked; everything else (including lists) is a leaf. Empty
    mappings and ``None`` produce nothing, so they never create nodes.
    """
    prefix = prefix or []
    if value is None:
        return
    if isinstance(value, Mapping):
        for key, child in value.items():
            key_segments = split_path(str(key))
            if len(key_segments) != 1:
                raise InvalidPathError(f"Invalid child key: {key!r}")
            yield from flatten(child, prefix + key_segments)
        return
    yield prefix, value


def nest(rows: list[tuple[list[str], Any]]) -> Any:
    """Build a nested mapping from relative (segments, leaf) pairs.

    A single row with no segments is a bare leaf at the requested path.
    """
    if len(rows) == 1 and not rows[0][0]:
        return rows[0][1]
    tree: dict[str, Any] = {}
    for segments, leaf in rows:
        node = tree
        for segment in segments[:-1]:
            node = node.setdefault(segment, {})
        if segments:
            node[segments[-1]] = leaf
    return tree or None


# =============================================================================
# Abstract Store Interface
# =============================================================================


class BaseTreeStore(ABC):
    """Abstract base class for document tree backends."""

    @abstractmethod
    async def connect(self) -> None:
        """Open connection and initialize schema."""
        pass

    @abstractmethod
    async def close(self) -> None:
        """Close connection."""
        pass

    async def __aenter__(self) -> "BaseTreeStore":
        """Open connection and apply migrations."""
        await self.connect()
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: object | None,
    ) -> None:
        """Close connection."""
        await self.close()

    @abstractmethod
    async def get(self, path: str) -> Any | None:
        """Read the value at a path.

        Returns:
            Nested mapping for inner nodes, the stored value for leaves, or
            None if nothing exists at or below the path
        """
        pass

    @abstractmethod
    async def update(self, updates: Mapping[str, Any]) -> None:
        """Apply a batch of writes atomically.

        Each value replaces whatever is stored at its path; ``None`` deletes
        the path and everything below it. Either every write is applied or
        none is.

        Raises:
            InvalidPathError: On malformed or overlapping paths
            StoreError: On backend failure (nothing is applied)
        """
        pass

    async def exists(self, path: str) -> bool:
        """Check if anything is stored at or below a path."""
        return await self.get(path) is not None

    async def set(self, path: str, value: Any) -> None:
        """Replace the value at a single path."""
        await self.update({path: value})

    async def remove(self, path: str) -> None:
        """Delete a path and everything below it."""
        await self.update({path: None})

    def push_key(self) -> str:
        """Generate a new time-ordered child key."""
        return generate_push_key()
