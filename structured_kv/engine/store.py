"""
KvStore - ordered key-value store with versionstamped atomic commits.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import os
from collections.abc import AsyncIterator, Sequence
from dataclasses import replace
from pathlib import Path

from structured_kv.engine.atomic import AtomicOperation
from structured_kv.engine.recoverer import StoreRecoverer
from structured_kv.interfaces.kv_store import OrderedKvStore
from structured_kv.models.entry import (
    KvCheck,
    KvCommitResult,
    KvEntry,
    KvEntryMaybe,
    KvListSelector,
    Mutation,
    MutationType,
)
from structured_kv.models.exceptions import StoreClosedError
from structured_kv.models.key_codec import KvKey, prefix_end
from structured_kv.models.sortedcontainers import SortedKeyList
from structured_kv.models.value import Value, format_versionstamp
from structured_kv.models.wal import WAL
from structured_kv.models.wal_entry import WALEntry

logger = logging.getLogger(__name__)


class KvStore(OrderedKvStore):
    """
    Ordered key-value store with optimistic, conditioned atomic commits.

    Provides:
    - get(key): point lookup with versionstamp
    - list(selector): batched range or prefix scans, forward or reverse
    - atomic(): checks + sets + deletes applied all-or-nothing

    Architecture:
    - Live data sits in a sorted container keyed by tuple keys
    - Each commit gets the next version; its versionstamp tags every value it writes
    - With a storage_dir, commits are appended to a WAL before being applied
      and replayed on open
    """

    # Entries fetched per list round trip
    DEFAULT_BATCH_SIZE = 100
    MAX_BATCH_SIZE = 1000

    WAL_FILENAME = "kv.wal"

    def __init__(
        self,
        storage_dir: str | None = None,
        fsync_interval_ms: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        """
        Initialize the store.

        Args:
            storage_dir: Directory for the WAL. None keeps everything in memory.
            fsync_interval_ms: Milliseconds between WAL fsyncs (default: 0 = always fsync).
                              Maximum: 10000 (10 seconds).
            batch_size: Default number of entries fetched per list round trip.
        """
        if fsync_interval_ms < 0:
            raise ValueError(f"fsync_interval_ms must be >= 0, got {fsync_interval_ms}")
        if fsync_interval_ms > 10000:
            raise ValueError(
                f"fsync_interval_ms cannot exceed 10000ms (10 seconds), got {fsync_interval_ms}"
            )
        _validate_batch_size(batch_size, self.MAX_BATCH_SIZE)

        if storage_dir is not None:
            if not storage_dir.strip():
                raise ValueError("storage_dir cannot be empty")
            storage_dir = os.path.abspath(storage_dir)

        self._storage_dir = storage_dir
        self._fsync_interval_ms = fsync_interval_ms
        self._batch_size = batch_size

        self._container = SortedKeyList()
        self._version: int = 0
        self._wal: WAL | None = None

        # Serializes check evaluation, WAL append and apply across commits
        self._commit_lock = asyncio.Lock()
        self._closed = False

        if self._storage_dir is not None:
            self._initialize()

    @classmethod
    async def create(
        cls,
        storage_dir: str | None = None,
        fsync_interval_ms: int = 0,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> "KvStore":
        """Async factory; recovery runs in a worker thread for on-disk stores."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None, lambda: cls(storage_dir, fsync_interval_ms, batch_size)
        )

    def _initialize(self) -> None:
        """Recover from an existing WAL and open it for appends."""
        Path(self._storage_dir).mkdir(parents=True, exist_ok=True)

        wal = WAL(file_path=os.path.join(self._storage_dir, self.WAL_FILENAME))
        self._version = StoreRecoverer().recover(wal, self._container)

        wal.set_fsync_interval(self._fsync_interval_ms)
        wal.open()
        self._wal = wal

    @property
    def storage_dir(self) -> str | None:
        return self._storage_dir

    @property
    def versionstamp(self) -> str:
        """Versionstamp of the last applied commit."""
        return format_versionstamp(self._version)

    def size(self) -> int:
        return self._container.size()

    def _ensure_open(self) -> None:
        if self._closed:
            raise StoreClosedError("KvStore is closed")

    async def get(self, key: Sequence[str]) -> KvEntryMaybe:
        self._ensure_open()
        key = tuple(key)
        value = self._container.get(key)
        if value is None:
            return KvEntry(key=key)
        return self._to_entry(key, value)

    def list(
        self,
        selector: KvListSelector,
        *,
        limit: int | None = None,
        reverse: bool = False,
        batch_size: int | None = None,
    ) -> "KvListIterator":
        self._ensure_open()
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be >= 0, got {limit}")
        if batch_size is None:
            batch_size = self._batch_size
        _validate_batch_size(batch_size, self.MAX_BATCH_SIZE)
        return KvListIterator(self, selector, limit=limit, reverse=reverse, batch_size=batch_size)

    def atomic(self) -> AtomicOperation:
        self._ensure_open()
        return AtomicOperation(self)

    def _current_versionstamp(self, key: KvKey) -> str | None:
        value = self._container.get(key)
        return value.versionstamp if value is not None else None

    async def _commit(
        self, checks: list[KvCheck], mutations: list[Mutation]
    ) -> KvCommitResult:
        """Evaluate checks and apply mutations as one unit."""
        self._ensure_open()
        async with self._commit_lock:
            for check in checks:
                if self._current_versionstamp(check.key) != check.versionstamp:
                    logger.debug(
                        f"Check failed for {check.key}: expected {check.versionstamp}"
                    )
                    return KvCommitResult(ok=False)

            # A check-only commit writes nothing and keeps the current version
            if not mutations:
                return KvCommitResult(ok=True, versionstamp=self.versionstamp)

            # Stored values are private copies; later caller mutations do not leak in
            entry = WALEntry(
                seq=self._version + 1,
                mutations=[
                    replace(mutation, value=copy.deepcopy(mutation.value))
                    for mutation in mutations
                ],
            )

            # Durability first: a failed append leaves memory untouched
            if self._wal is not None:
                await self._wal.append(entry)

            self._apply(entry)
            self._version = entry.seq
            return KvCommitResult(ok=True, versionstamp=entry.versionstamp)

    def _apply(self, entry: WALEntry) -> None:
        for mutation in entry.mutations:
            if mutation.type == MutationType.SET:
                self._container.put(mutation.key, Value(mutation.value, entry.versionstamp))
            else:
                self._container.delete(mutation.key)

    @staticmethod
    def _to_entry(key: KvKey, value: Value) -> KvEntry:
        return KvEntry(key=key, value=copy.deepcopy(value.data), versionstamp=value.versionstamp)

    def _scan(
        self,
        start: KvKey | None,
        end: KvKey | None,
        reverse: bool,
        exclusive_start: bool,
        limit: int,
    ) -> list[KvEntry]:
        """Fetch one batch of live entries; used by KvListIterator."""
        self._ensure_open()
        return [
            self._to_entry(key, value)
            for key, value in self._container.iterator(
                start, end, reverse=reverse, exclusive_start=exclusive_start, limit=limit
            )
        ]

    async def compact(self) -> None:
        """
        Rewrite the WAL as a single record holding the live entries.

        No-op for in-memory stores.
        """
        self._ensure_open()
        if self._wal is None:
            return

        async with self._commit_lock:
            mutations = [
                Mutation(key=key, type=MutationType.SET, value=value.data)
                for key, value in self._container.iterator()
            ]
            # Keep the current version so versionstamps stay monotonic after reopen
            entries = [WALEntry(seq=self._version, mutations=mutations)] if mutations else []
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._wal.rewrite, entries)
            logger.info(f"Compacted WAL to {len(mutations)} live keys")

    async def close(self) -> None:
        """Close the store, flushing the WAL."""
        if self._closed:
            return
        async with self._commit_lock:
            self._closed = True
            if self._wal is not None:
                self._wal.close()

    async def __aenter__(self) -> "KvStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class KvListIterator(AsyncIterator[KvEntry]):
    """
    Single-pass async iterator over a key range, fetched in batches.

    Each batch resumes strictly after the last key returned, so commits
    landing between batches never invalidate the scan.
    """

    def __init__(
        self,
        store: KvStore,
        selector: KvListSelector,
        limit: int | None,
        reverse: bool,
        batch_size: int,
    ) -> None:
        self._store = store
        self._reverse = reverse
        self._batch_size = batch_size
        self._remaining = limit
        self._buffer: list[KvEntry] = []
        self._exhausted = False
        self._cursor: KvKey | None = None

        self._start, self._end, self._exclusive_start = _resolve_bounds(selector)

    @property
    def cursor(self) -> KvKey | None:
        """Key of the last entry returned, or None before the first one."""
        return self._cursor

    def __aiter__(self) -> "KvListIterator":
        return self

    async def __anext__(self) -> KvEntry:
        if self._remaining is not None and self._remaining <= 0:
            raise StopAsyncIteration

        if not self._buffer:
            if self._exhausted:
                raise StopAsyncIteration
            self._fetch()
            if not self._buffer:
                raise StopAsyncIteration

        entry = self._buffer.pop(0)
        self._cursor = entry.key
        if self._remaining is not None:
            self._remaining -= 1
        return entry

    def _fetch(self) -> None:
        batch_size = self._batch_size
        if self._remaining is not None:
            batch_size = min(batch_size, self._remaining)

        batch = self._store._scan(
            self._start, self._end, self._reverse, self._exclusive_start, batch_size
        )
        if len(batch) < batch_size:
            self._exhausted = True
        if batch:
            # Narrow the bounds past the last key so the next batch resumes after it
            if self._reverse:
                self._end = batch[-1].key
            else:
                self._start = batch[-1].key
                self._exclusive_start = True
        self._buffer = batch


def _resolve_bounds(selector: KvListSelector) -> tuple[KvKey | None, KvKey | None, bool]:
    """
    Convert a selector into ``(start, end, exclusive_start)`` scan bounds.

    A prefix selects keys strictly below it; explicit start/end narrow that.
    """
    start = tuple(selector.start) if selector.start is not None else None
    end = tuple(selector.end) if selector.end is not None else None

    if selector.prefix is None:
        return start, end, False

    prefix = tuple(selector.prefix)
    upper = prefix_end(prefix)
    if upper is not None and (end is None or upper < end):
        end = upper

    if start is None or start <= prefix:
        return prefix, end, True
    return start, end, False


def _validate_batch_size(batch_size: int, maximum: int) -> None:
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    if batch_size > maximum:
        raise ValueError(f"batch_size cannot exceed {maximum}, got {batch_size}")


async def open_kv(
    storage_dir: str | None = None,
    fsync_interval_ms: int = 0,
    batch_size: int = KvStore.DEFAULT_BATCH_SIZE,
) -> KvStore:
    """
    Open an ordered store; in memory when ``storage_dir`` is None.

    Use as ``async with await open_kv(path) as kv:`` or close explicitly.
    """
    return await KvStore.create(storage_dir, fsync_interval_ms, batch_size)
