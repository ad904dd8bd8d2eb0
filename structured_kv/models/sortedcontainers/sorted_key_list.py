"""
Bisect-indexed sorted container for tuple keys.
"""

import bisect
from collections.abc import Iterator
from typing import Any

from structured_kv.interfaces.sorted_container import SortedContainer
from structured_kv.models.key_codec import KvKey


class SortedKeyList(SortedContainer):
    """
    Sorted container keeping a bisect-searchable list of keys beside a dict.

    Lookups are O(1), inserts and deletes O(N) list shifts, and range scans
    O(log N) to locate plus the size of the range.
    """

    def __init__(self) -> None:
        self._keys: list[KvKey] = []
        self._values: dict[KvKey, Any] = {}

    def put(self, key: KvKey, value: Any) -> None:
        if key not in self._values:
            bisect.insort(self._keys, key)
        self._values[key] = value

    def get(self, key: KvKey) -> Any | None:
        return self._values.get(key)

    def delete(self, key: KvKey) -> bool:
        if key not in self._values:
            return False

        idx = bisect.bisect_left(self._keys, key)
        del self._keys[idx]
        del self._values[key]
        return True

    def has(self, key: KvKey) -> bool:
        return key in self._values

    def size(self) -> int:
        return len(self._keys)

    def iterator(
        self,
        start: KvKey | None = None,
        end: KvKey | None = None,
        reverse: bool = False,
        exclusive_start: bool = False,
        limit: int | None = None,
    ) -> Iterator[tuple[KvKey, Any]]:
        if start is None:
            start_idx = 0
        elif exclusive_start:
            start_idx = bisect.bisect_right(self._keys, start)
        else:
            start_idx = bisect.bisect_left(self._keys, start)

        if end is None:
            end_idx = len(self._keys)
        else:
            end_idx = bisect.bisect_left(self._keys, end)

        if limit is not None and end_idx - start_idx > limit:
            if reverse:
                start_idx = end_idx - limit
            else:
                end_idx = start_idx + limit

        # Slice copies the keys, so the scan is a snapshot
        keys = self._keys[start_idx:end_idx]
        if reverse:
            keys.reverse()
        values = self._values
        return iter([(key, values[key]) for key in keys])
