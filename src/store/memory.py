"""In-memory document tree.

Used by tests and as a scratch backend. Writes are applied to a copy of the
tree which replaces the live tree only after every path in the batch
succeeded.
"""

import copy
from collections.abc import Mapping
from typing import Any

import structlog

from src.store.base import (
    BaseTreeStore,
    InvalidPathError,
    flatten,
    normalize_updates,
    split_path,
)

logger = structlog.get_logger(__name__)


def _prune(node: dict[str, Any], segments: list[str]) -> None:
    """Drop mappings left empty along a path after a delete."""
    if not segments:
        return
    child = node.get(segments[0])
    if isinstance(child, dict):
        _prune(child, segments[1:])
        if not child:
            del node[segments[0]]


class MemoryTreeStore(BaseTreeStore):
    """Nested-dict backend with copy-on-write batches."""

    def __init__(self, initial: Mapping[str, Any] | None = None):
        """Initialize the tree.

        Args:
            initial: Optional starting tree (deep-copied)
        """
        self._root: dict[str, Any] = {}
        self.write_count = 0
        if initial:
            for segments, leaf in flatten(initial):
                self._write(self._root, segments, copy.deepcopy(leaf))

    async def connect(self) -> None:
        """Nothing to open."""
        pass

    async def close(self) -> None:
        """Nothing to close."""
        pass

    async def get(self, path: str) -> Any | None:
        node: Any = self._root
        for segment in split_path(path):
            if not isinstance(node, dict) or segment not in node:
                return None
            node = node[segment]
        if isinstance(node, dict) and not node:
            return None
        return copy.deepcopy(node)

    async def update(self, updates: Mapping[str, Any]) -> None:
        batch = normalize_updates(updates)
        if not batch:
            return

        staged = copy.deepcopy(self._root)
        for segments, value in batch:
            self._delete(staged, segments)
            for leaf_segments, leaf in flatten(value):
                self._write(staged, segments + leaf_segments, copy.deepcopy(leaf))
            _prune(staged, segments)

        self._root = staged
        self.write_count += 1
        logger.debug("store_update_applied", backend="memory", paths=len(batch))

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the whole tree."""
        return copy.deepcopy(self._root)

    @staticmethod
    def _delete(root: dict[str, Any], segments: list[str]) -> None:
        if not segments:
            root.clear()
            return
        node: Any = root
        for segment in segments[:-1]:
            if not isinstance(node, dict) or segment not in node:
                return
            node = node[segment]
        if isinstance(node, dict):
            node.pop(segments[-1], None)

    @staticmethod
    def _write(root: dict[str, Any], segments: list[str], leaf: Any) -> None:
        if not segments:
            raise InvalidPathError("Cannot store a bare value at the tree root")
        node = root
        for segment in segments[:-1]:
            child = node.get(segment)
            if not isinstance(child, dict):
                # A leaf on the way down is replaced by an inner node
                child = {}
                node[segment] = child
            node = child
        node[segments[-1]] = leaf

