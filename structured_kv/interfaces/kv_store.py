"""
OrderedKvStore contract for the flat store underneath the structured layer.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Sequence
from typing import TYPE_CHECKING

from structured_kv.models.entry import KvEntry, KvEntryMaybe, KvListSelector

if TYPE_CHECKING:
    from structured_kv.engine.atomic import AtomicOperation


class OrderedKvStore(ABC):
    """
    A flat key-value store ordered by tuple key with conditioned atomic commits.

    Implementations must provide:
    - get(key): point lookup returning value and versionstamp
    - list(selector): ordered range scan over ``[start, end)`` or a prefix
    - atomic(): a builder of checks, sets and deletes applied all-or-nothing
    """

    @abstractmethod
    async def get(self, key: Sequence[str]) -> KvEntryMaybe:
        """
        Look up a single key.

        Returns:
            The entry; ``value`` and ``versionstamp`` are None when absent.
        """
        pass

    @abstractmethod
    def list(
        self,
        selector: KvListSelector,
        *,
        limit: int | None = None,
        reverse: bool = False,
        batch_size: int | None = None,
    ) -> AsyncIterator[KvEntry]:
        """
        Scan a range of keys.

        Args:
            selector: Prefix or ``[start, end)`` bounds.
            limit: Maximum number of entries to yield.
            reverse: Yield in descending key order.
            batch_size: Entries fetched per round trip.

        Returns:
            Single-pass async iterator of entries in key order.
        """
        pass

    @abstractmethod
    def atomic(self) -> "AtomicOperation":
        """Start building an atomic commit."""
        pass
