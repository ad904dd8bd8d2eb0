"""
SortedContainer abstract base class for sorted key-value data structures.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from typing import Any

from structured_kv.models.key_codec import KvKey


class SortedContainer(ABC):
    """
    Abstract base class for containers ordered by tuple key.

    Keys compare segment by segment; a key sorts before every longer key
    it is a prefix of.

    Implementations:
    - SortedKeyList: bisect-indexed key list, O(log N) lookups
    """

    @abstractmethod
    def put(self, key: KvKey, value: Any) -> None:
        """
        Insert or update a key-value pair.

        Args:
            key: The key to insert/update.
            value: The value to associate with the key.
        """
        pass

    @abstractmethod
    def get(self, key: KvKey) -> Any | None:
        """
        Retrieve the value associated with a key.

        Args:
            key: The key to look up.

        Returns:
            The value if found, None otherwise.
        """
        pass

    @abstractmethod
    def delete(self, key: KvKey) -> bool:
        """
        Remove a key-value pair.

        Args:
            key: The key to remove.

        Returns:
            True if the key was found and removed, False otherwise.
        """
        pass

    @abstractmethod
    def has(self, key: KvKey) -> bool:
        pass

    @abstractmethod
    def size(self) -> int:
        """Return the number of key-value pairs."""
        pass

    @abstractmethod
    def iterator(
        self,
        start: KvKey | None = None,
        end: KvKey | None = None,
        reverse: bool = False,
        exclusive_start: bool = False,
        limit: int | None = None,
    ) -> Iterator[tuple[KvKey, Any]]:
        """
        Return an iterator over key-value pairs in ``[start, end)``.

        Args:
            start: Lower bound, inclusive unless ``exclusive_start``. None = unbounded.
            end: Upper bound (exclusive). None = unbounded.
            reverse: Yield in descending key order.
            exclusive_start: Exclude ``start`` itself, for resuming after a cursor.
            limit: Maximum number of pairs, taken from the scan direction's start.

        Returns:
            Iterator over a snapshot of the range; later writes do not affect it.
        """
        pass

    def __iter__(self) -> Iterator[tuple[KvKey, Any]]:
        return self.iterator()
