"""
StructureNode - trie of child counts rebuilt from system key scans.
"""

from collections.abc import Iterable, Sequence
from typing import Any

COUNT_FIELD = "_v"


class StructureNode(dict):
    """
    A node of the namespace tree.

    Maps child segment -> child StructureNode. ``count`` holds the number of
    direct children stored under this node's path, or None when no counter
    exists at this depth (the node only leads to deeper counters).
    """

    def __init__(self, count: int | None = None) -> None:
        super().__init__()
        self.count = count

    def child(self, segment: str) -> "StructureNode":
        """Return the child for ``segment``, creating it if missing."""
        node = self.get(segment)
        if node is None:
            node = StructureNode()
            self[segment] = node
        return node

    def walk(self, path: Sequence[str]) -> "StructureNode | None":
        """Return the node at ``path`` below this one, or None."""
        node = self
        for segment in path:
            node = node.get(segment)
            if node is None:
                return None
        return node

    def to_dict(self) -> dict[str, Any]:
        """Render as plain nested dicts with the count under ``"_v"``."""
        out: dict[str, Any] = {}
        if self.count is not None:
            out[COUNT_FIELD] = self.count
        for segment, node in self.items():
            out[segment] = node.to_dict()
        return out

    def __eq__(self, other: object) -> bool:
        # A plain dict carries no count, so it only matches a countless node
        if isinstance(other, StructureNode):
            return self.count == other.count and dict.__eq__(self, other)
        if isinstance(other, dict):
            return self.count is None and dict.__eq__(self, other)
        return NotImplemented

    def __ne__(self, other: object) -> bool:
        result = self.__eq__(other)
        if result is NotImplemented:
            return result
        return not result

    def __repr__(self) -> str:
        return f"StructureNode(count={self.count!r}, children={dict.__repr__(self)})"

    @classmethod
    def from_counters(cls, counters: Iterable[tuple[Sequence[str], int]]) -> "StructureNode":
        """
        Fold ``(path, count)`` pairs into a tree.

        Each path is walked segment by segment, creating nodes as needed; the
        count lands on the node at the path's full depth. The empty path sets
        the root's own count.
        """
        root = cls()
        for path, count in counters:
            node = root
            for segment in path:
                node = node.child(segment)
            node.count = count
        return root
