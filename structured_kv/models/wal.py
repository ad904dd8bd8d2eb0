import asyncio
import os
import time
import zlib
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import BinaryIO

from structured_kv.models.exceptions import WALCorruptionError
from structured_kv.models.wal_entry import WALEntry


def _frame(entry: WALEntry) -> bytes:
    """Frame an entry as [length:4][entry_data][crc32:4]."""
    entry_bytes = bytes(entry)
    checksum = zlib.crc32(entry_bytes) & 0xffffffff
    return len(entry_bytes).to_bytes(4, "big") + entry_bytes + checksum.to_bytes(4, "big")


class WAL:
    """
    Write-Ahead Log for durability.

    Provides append-only logging of committed atomic operations.
    Supports iteration for recovery after crashes.
    """

    def __init__(self, file_path: str) -> None:
        """
        Initialize WAL.

        Args:
            file_path: Path to the WAL file.
        """
        self.file_path = file_path
        self._file: BinaryIO | None = None

        # Periodic fsync configuration
        self._fsync_interval_ms: int = 0  # 0 = always fsync (default)
        self._last_fsync_time: float = 0.0  # time.monotonic()
        self._lock = asyncio.Lock()

    def set_fsync_interval(self, fsync_interval_ms: int) -> None:
        """
        Configure fsync interval.

        Args:
            fsync_interval_ms: Milliseconds between fsyncs.
                              0 = always fsync (default).
                              Max 10000 (10 seconds).
        """
        if fsync_interval_ms < 0:
            raise ValueError(f"fsync_interval_ms must be >= 0, got {fsync_interval_ms}")
        if fsync_interval_ms > 10000:
            raise ValueError(f"fsync_interval_ms cannot exceed 10000ms, got {fsync_interval_ms}")
        self._fsync_interval_ms = fsync_interval_ms

    def open(self) -> None:
        """Open the WAL file for appending."""
        Path(self.file_path).parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.file_path, "ab+")

    def _should_flush(self) -> bool:
        """
        Check if enough time has elapsed to flush.

        Returns:
            True if flush should happen now.
        """
        if self._fsync_interval_ms == 0:
            return True

        current_time = time.monotonic()
        elapsed_ms = (current_time - self._last_fsync_time) * 1000

        if elapsed_ms >= self._fsync_interval_ms:
            self._last_fsync_time = current_time
            return True
        return False

    async def _attempt_flush(self) -> None:
        """Attempts flushing the data to disk."""
        if self._should_flush():
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self._perform_flush)

    def _perform_flush(self) -> None:
        """Performs the flushing to disk from Python user space -> OS kernel -> Disk"""
        self._file.flush()
        # Use fdatasync if available (Linux), fallback to fsync (macOS/Windows)
        _sync_data = getattr(os, "fdatasync", os.fsync)
        _sync_data(self._file.fileno())

    def close(self) -> None:
        """Close the WAL file, flushing pending writes."""
        if self._file:
            self._perform_flush()
            self._file.close()
            self._file = None

    async def append(self, entry: WALEntry) -> None:
        """
        Append a commit record to the WAL.

        Args:
            entry: The entry to append.

        Raises:
            RuntimeError: If WAL is not open.
            TypeError: If a value in the entry is not JSON serializable.
        """
        if self._file is None:
            raise RuntimeError("WAL is not open")

        # Serialize before taking the lock so a bad value leaves the log untouched
        framed = _frame(entry)
        async with self._lock:
            self._file.write(framed)

        await self._attempt_flush()

    def rewrite(self, entries: Iterable[WALEntry]) -> None:
        """
        Atomically replace the log contents with ``entries``.

        The new log is written next to the current one and swapped in with
        ``os.replace`` so a crash leaves either the old or the new log.
        """
        was_open = self._file is not None
        if was_open:
            self.close()

        tmp_path = f"{self.file_path}.tmp"
        with open(tmp_path, "wb") as f:
            for entry in entries:
                f.write(_frame(entry))
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, self.file_path)

        if was_open:
            self.open()

    def truncate(self, size: int) -> None:
        """
        Cut the log back to ``size`` bytes, dropping a torn tail record.

        Must run before ``open()`` so later appends follow the last good record.
        """
        if self._file is not None:
            raise RuntimeError("Cannot truncate an open WAL")

        with open(self.file_path, "r+b") as f:
            f.truncate(size)
            f.flush()
            os.fsync(f.fileno())

    def replay(self) -> "_WALIterator":
        """
        Iterate over all entries, exposing where the intact log ends.

        After exhaustion, ``end_offset`` is the byte offset just past the last
        complete record and ``torn`` tells whether bytes follow it.
        """
        return _WALIterator(self.file_path)

    def __enter__(self) -> "WAL":
        if self._file is None:
            self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[WALEntry]:
        """Iterate over all entries in the WAL."""
        return self.replay()


class _WALIterator(Iterator[WALEntry]):
    """Iterator over WAL entries."""

    def __init__(self, file_path: str) -> None:
        self._file_path = file_path
        self._file: BinaryIO | None = None
        self.end_offset = 0
        self.torn = False
        if os.path.exists(file_path):
            self._file = open(file_path, "rb")

    def __iter__(self) -> Iterator[WALEntry]:
        return self

    def _stop_at_torn_tail(self, bytes_read: int) -> None:
        # A partially written record (crash mid-append) ends the log
        self.torn = bytes_read > 0
        self.close()
        raise StopIteration

    def __next__(self) -> WALEntry:
        if self._file is None:
            raise StopIteration

        try:
            entry_offset = self._file.tell()

            length_bytes = self._file.read(4)
            if len(length_bytes) < 4:
                self._stop_at_torn_tail(len(length_bytes))

            length = int.from_bytes(length_bytes, "big")
            entry_bytes = self._file.read(length)
            if len(entry_bytes) < length:
                self._stop_at_torn_tail(4 + len(entry_bytes))

            checksum_bytes = self._file.read(4)
            if len(checksum_bytes) < 4:
                self._stop_at_torn_tail(4 + length + len(checksum_bytes))

            expected_checksum = int.from_bytes(checksum_bytes, "big")
            actual_checksum = zlib.crc32(entry_bytes) & 0xffffffff

            if expected_checksum != actual_checksum:
                self.close()
                raise WALCorruptionError(
                    expected=expected_checksum,
                    actual=actual_checksum,
                    entry_offset=entry_offset,
                )

            entry = WALEntry.from_bytes(entry_bytes)
            self.end_offset = self._file.tell()
            return entry
        except (StopIteration, WALCorruptionError):
            raise
        except Exception:
            self.close()
            raise

    def close(self) -> None:
        if self._file:
            self._file.close()
            self._file = None

    def __del__(self) -> None:
        self.close()
