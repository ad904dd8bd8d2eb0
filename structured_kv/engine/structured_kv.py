"""
StructuredKv - hierarchical namespace with child counters over an ordered store.
"""

import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from typing import Any

from structured_kv.interfaces.kv_store import OrderedKvStore
from structured_kv.models.entry import KvCommitResult, KvEntry, KvEntryMaybe, KvListSelector
from structured_kv.models.exceptions import InvalidKeyError
from structured_kv.models.key_codec import (
    SYSTEM_TAG,
    decorate_data_key,
    decorate_system_key,
    normalize_key,
    prefix_end,
    undecorate_data_key,
)
from structured_kv.models.structure import StructureNode

logger = logging.getLogger(__name__)


class StructuredKv:
    """
    Hierarchical key-value layer on top of a flat ordered store.

    Provides:
    - set(key, value): write a value, counting new children of its prefix
    - get(key): read a value
    - delete(key): remove a value, uncounting it from its prefix
    - list(selector): range scan over logical keys
    - structure(prefix): tree of child counts below a prefix

    Every logical key is stored twice: the value under its DATA key and a
    per-prefix child counter under its SYSTEM key. Counters are maintained
    without locks. Each attempt reads, then issues one atomic commit that is
    conditioned on the versionstamps it read; a commit that loses a race is
    retried from the read.
    """

    DEFAULT_MAX_RETRIES = 10
    DEFAULT_RETRY_BACKOFF_MS = 1

    # Upper bound for a single backoff sleep
    MAX_RETRY_SLEEP_MS = 100

    def __init__(
        self,
        store: OrderedKvStore,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_backoff_ms: int = DEFAULT_RETRY_BACKOFF_MS,
    ) -> None:
        """
        Args:
            store: The flat ordered store to build on.
            max_retries: Extra attempts after a conflicting commit (0..1000).
            retry_backoff_ms: Base of the exponential backoff between attempts
                (0 = only yield to the event loop). Maximum 10000.
        """
        if max_retries < 0 or max_retries > 1000:
            raise ValueError(f"max_retries must be between 0 and 1000, got {max_retries}")
        if retry_backoff_ms < 0 or retry_backoff_ms > 10000:
            raise ValueError(
                f"retry_backoff_ms must be between 0 and 10000, got {retry_backoff_ms}"
            )

        self._store = store
        self._max_retries = max_retries
        self._retry_backoff_ms = retry_backoff_ms

    @property
    def store(self) -> OrderedKvStore:
        return self._store

    def list(
        self,
        selector: KvListSelector,
        *,
        limit: int | None = None,
        reverse: bool = False,
        batch_size: int | None = None,
    ) -> AsyncIterator[KvEntry]:
        """
        Scan values whose data keys fall in ``[start, end)`` of the selector.

        Both bounds are logical keys and are encoded like any data key, so
        ``KvListSelector(start=("A", ""), end=("A", "~"))`` yields the direct
        children of ``("A",)`` but neither ``("A",)`` itself nor deeper
        descendants. System counters are never returned.

        Returns:
            Single-pass async iterator of entries carrying logical keys.

        Raises:
            InvalidKeyError: If the selector lacks a start or an end.
        """
        if selector.start is None or selector.end is None:
            raise InvalidKeyError(selector, "list requires both start and end keys")

        physical = KvListSelector(
            start=decorate_data_key(selector.start),
            end=decorate_data_key(selector.end),
        )
        entries = self._store.list(physical, limit=limit, reverse=reverse, batch_size=batch_size)
        return _decode_entries(entries)

    async def structure(self, prefix: Sequence[str] = ()) -> StructureNode:
        """
        Rebuild the tree of child counts at and below ``prefix``.

        Every counter whose path starts with ``prefix`` (including the
        counter of ``prefix`` itself) is folded into a trie keyed by path
        segment, counting from the root. ``structure()`` over the whole store
        therefore carries the number of top-level keys as the root's count.

        Returns:
            The root StructureNode; empty when no counters match.
        """
        if isinstance(prefix, (str, bytes)) or not all(isinstance(s, str) for s in prefix):
            raise InvalidKeyError(prefix, "prefix must be a sequence of string segments")

        start = (SYSTEM_TAG, *prefix)
        selector = KvListSelector(start=start, end=prefix_end(start))

        counters = []
        async for entry in self._store.list(selector):
            counters.append((entry.key[1:], entry.value))
        return StructureNode.from_counters(counters)

    async def get(self, key: Sequence[str]) -> KvEntryMaybe:
        """
        Look up the value of ``key``.

        Returns:
            The store entry verbatim: physical data key, value and
            versionstamp. ``value`` and ``versionstamp`` are None when absent.
        """
        return await self._store.get(decorate_data_key(key))

    async def set(self, key: Sequence[str], value: Any) -> KvCommitResult:
        """
        Write ``value`` under ``key``.

        A first write increments the counter of the key's prefix in the same
        commit; overwriting an existing key leaves the counter untouched.

        Returns:
            The applied commit, or ``KvCommitResult(ok=False)`` when every
            attempt lost a race. Callers may retry.
        """
        key = normalize_key(key)
        system_key = decorate_system_key(key)
        data_key = decorate_data_key(key)

        for attempt in range(self._max_retries + 1):
            system_entry = await self._store.get(system_key)
            count = system_entry.value if system_entry.exists else 0

            result = await (
                self._store.atomic()
                .check(data_key, None)
                .check(system_key, system_entry.versionstamp)
                .set(system_key, count + 1)
                .set(data_key, value)
                .commit()
            )
            if result.ok:
                return result

            # Either the key already exists (overwrite) or the counter moved
            data_entry = await self._store.get(data_key)
            if data_entry.exists:
                result = await (
                    self._store.atomic()
                    .check(data_key, data_entry.versionstamp)
                    .set(data_key, value)
                    .commit()
                )
                if result.ok:
                    return result

            await self._backoff("set", key, attempt)

        logger.warning(f"set {key} gave up after {self._max_retries + 1} conflicting attempts")
        return KvCommitResult(ok=False)

    async def delete(self, key: Sequence[str]) -> KvCommitResult:
        """
        Remove ``key`` and uncount it from its prefix.

        The counter is decremented, or removed when it would reach zero.
        Deleting an absent key commits nothing but a no-op delete and leaves
        every counter alone.

        Returns:
            The applied commit, or ``KvCommitResult(ok=False)`` when every
            attempt lost a race.
        """
        key = normalize_key(key)
        system_key = decorate_system_key(key)
        data_key = decorate_data_key(key)

        for attempt in range(self._max_retries + 1):
            system_entry = await self._store.get(system_key)
            data_entry = await self._store.get(data_key)

            op = self._store.atomic().check(data_key, data_entry.versionstamp)
            if not data_entry.exists:
                op.delete(data_key)
            elif not system_entry.exists:
                logger.warning(f"No child counter for live key {key}; deleting data only")
                op.check(system_key, None).delete(data_key)
            elif system_entry.value - 1 <= 0:
                op.check(system_key, system_entry.versionstamp)
                op.delete(system_key).delete(data_key)
            else:
                op.check(system_key, system_entry.versionstamp)
                op.set(system_key, system_entry.value - 1).delete(data_key)

            result = await op.commit()
            if result.ok:
                return result

            await self._backoff("delete", key, attempt)

        logger.warning(f"delete {key} gave up after {self._max_retries + 1} conflicting attempts")
        return KvCommitResult(ok=False)

    async def _backoff(self, operation: str, key: tuple, attempt: int) -> None:
        if attempt >= self._max_retries:
            return
        wait_ms = min(self._retry_backoff_ms * 2 ** attempt, self.MAX_RETRY_SLEEP_MS)
        logger.debug(
            f"{operation} {key} conflicted (attempt {attempt + 1}/{self._max_retries + 1}), "
            f"retrying in {wait_ms}ms"
        )
        await asyncio.sleep(wait_ms / 1000)


async def _decode_entries(entries: AsyncIterator[KvEntry]) -> AsyncIterator[KvEntry]:
    async for entry in entries:
        yield KvEntry(
            key=undecorate_data_key(entry.key),
            value=entry.value,
            versionstamp=entry.versionstamp,
        )
