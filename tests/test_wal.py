"""
Tests for the WAL and for durability of on-disk stores.
"""

import os
import zlib

import pytest

from structured_kv.engine.recoverer import StoreRecoverer
from structured_kv.engine.store import KvStore, open_kv
from structured_kv.engine.structured_kv import StructuredKv
from structured_kv.models.entry import KvListSelector, Mutation, MutationType
from structured_kv.models.exceptions import WALCorruptionError
from structured_kv.models.sortedcontainers import SortedKeyList
from structured_kv.models.wal import WAL
from structured_kv.models.wal_entry import WALEntry


def set_entry(seq, key, value):
    return WALEntry(seq=seq, mutations=[Mutation(key=key, type=MutationType.SET, value=value)])


class TestWALEntry:
    """Tests for commit record serialization."""

    def test_serialization(self):
        """Test a record with sets and deletes."""
        original = WALEntry(
            seq=7,
            mutations=[
                Mutation(key=("SYSTEM", "A"), type=MutationType.SET, value=2),
                Mutation(key=("DATA", "A", "v~B!v"), type=MutationType.SET, value={"x": [1]}),
                Mutation(key=("DATA", "A", "v~C!v"), type=MutationType.DELETE),
            ],
        )

        restored = WALEntry.from_bytes(bytes(original))

        assert restored.seq == 7
        assert restored.mutations == original.mutations
        assert restored.versionstamp == "00000000000000000007"

    def test_unicode_and_empty_segments(self):
        original = set_entry(1, ("", "中文", "a,b"), "日本語")
        restored = WALEntry.from_bytes(bytes(original))
        assert restored.mutations[0].key == ("", "中文", "a,b")
        assert restored.mutations[0].value == "日本語"

    def test_none_value(self):
        restored = WALEntry.from_bytes(bytes(set_entry(1, ("k",), None)))
        assert restored.mutations[0].type == MutationType.SET
        assert restored.mutations[0].value is None

    def test_unserializable_value(self):
        with pytest.raises(TypeError):
            bytes(set_entry(1, ("k",), object()))


class TestWAL:
    """Tests for WAL framing, checksums and recovery."""

    async def test_append_and_iterate(self, tmp_path):
        wal = WAL(file_path=str(tmp_path / "kv.wal"))
        wal.open()
        for i in range(3):
            await wal.append(set_entry(i + 1, (f"k{i}",), i))
        wal.close()

        entries = list(WAL(file_path=str(tmp_path / "kv.wal")))
        assert [entry.seq for entry in entries] == [1, 2, 3]
        assert [entry.mutations[0].value for entry in entries] == [0, 1, 2]

    async def test_checksum_computed_correctly(self, tmp_path):
        """Verify the stored checksum matches the CRC32 of the record."""
        wal_path = tmp_path / "kv.wal"
        with WAL(file_path=str(wal_path)) as wal:
            await wal.append(set_entry(1, ("k",), "v"))

        with open(wal_path, "rb") as f:
            length = int.from_bytes(f.read(4), "big")
            entry_bytes = f.read(length)
            stored_checksum = int.from_bytes(f.read(4), "big")

        assert stored_checksum == zlib.crc32(entry_bytes) & 0xffffffff

    async def test_corruption_detected(self, tmp_path):
        """Test that a flipped byte fails replay loudly."""
        wal_path = tmp_path / "kv.wal"
        with WAL(file_path=str(wal_path)) as wal:
            await wal.append(set_entry(1, ("k",), "value"))

        data = bytearray(wal_path.read_bytes())
        data[10] ^= 0xFF
        wal_path.write_bytes(bytes(data))

        with pytest.raises(WALCorruptionError) as exc_info:
            list(WAL(file_path=str(wal_path)))
        assert exc_info.value.entry_offset == 0

    async def test_torn_tail_ignored(self, tmp_path):
        """Test that a partially written last record ends the log."""
        wal_path = tmp_path / "kv.wal"
        with WAL(file_path=str(wal_path)) as wal:
            await wal.append(set_entry(1, ("a",), 1))
            await wal.append(set_entry(2, ("b",), 2))

        data = wal_path.read_bytes()
        wal_path.write_bytes(data[:-3])

        entries = list(WAL(file_path=str(wal_path)))
        assert [entry.seq for entry in entries] == [1]

    async def test_replay_reports_torn_tail(self, tmp_path):
        """Test that replay marks where the intact log ends."""
        wal_path = tmp_path / "kv.wal"
        with WAL(file_path=str(wal_path)) as wal:
            await wal.append(set_entry(1, ("a",), 1))
        intact_size = wal_path.stat().st_size
        with open(wal_path, "ab") as f:
            f.write(b"\x00\x00\x01")

        entries = WAL(file_path=str(wal_path)).replay()
        assert [entry.seq for entry in entries] == [1]
        assert entries.torn
        assert entries.end_offset == intact_size

    async def test_replay_clean_log_not_torn(self, tmp_path):
        wal_path = tmp_path / "kv.wal"
        with WAL(file_path=str(wal_path)) as wal:
            await wal.append(set_entry(1, ("a",), 1))

        entries = WAL(file_path=str(wal_path)).replay()
        list(entries)
        assert not entries.torn
        assert entries.end_offset == wal_path.stat().st_size

    async def test_recoverer_truncates_torn_tail(self, tmp_path):
        """Test that recovery cuts the torn record so appends follow good data."""
        wal_path = tmp_path / "kv.wal"
        with WAL(file_path=str(wal_path)) as wal:
            await wal.append(set_entry(1, ("a",), 1))
            await wal.append(set_entry(2, ("b",), 2))
        wal_path.write_bytes(wal_path.read_bytes()[:-3])

        wal = WAL(file_path=str(wal_path))
        last_seq = StoreRecoverer().recover(wal, SortedKeyList())
        assert last_seq == 1

        with wal:
            await wal.append(set_entry(2, ("c",), 3))

        assert [entry.seq for entry in WAL(file_path=str(wal_path))] == [1, 2]

    def test_missing_file_is_empty(self, tmp_path):
        assert list(WAL(file_path=str(tmp_path / "none.wal"))) == []

    async def test_append_requires_open(self, tmp_path):
        wal = WAL(file_path=str(tmp_path / "kv.wal"))
        with pytest.raises(RuntimeError):
            await wal.append(set_entry(1, ("k",), 1))

    @pytest.mark.parametrize("interval", [-1, 10001])
    def test_rejects_fsync_interval(self, tmp_path, interval):
        wal = WAL(file_path=str(tmp_path / "kv.wal"))
        with pytest.raises(ValueError):
            wal.set_fsync_interval(interval)

    async def test_recoverer_replays_commits(self, tmp_path):
        """Test that replay applies sets and deletes in order."""
        wal_path = tmp_path / "kv.wal"
        with WAL(file_path=str(wal_path)) as wal:
            await wal.append(set_entry(1, ("a",), 1))
            await wal.append(set_entry(2, ("b",), 2))
            await wal.append(
                WALEntry(seq=3, mutations=[Mutation(key=("a",), type=MutationType.DELETE)])
            )

        container = SortedKeyList()
        last_seq = StoreRecoverer().recover(WAL(file_path=str(wal_path)), container)

        assert last_seq == 3
        assert container.size() == 1
        assert container.get(("b",)).data == 2
        assert container.get(("b",)).versionstamp == "00000000000000000002"


class TestDurableStore:
    """Tests for stores opened with a storage directory."""

    async def test_data_survives_reopen(self, temp_dir):
        async with await open_kv(temp_dir) as kv:
            result = await kv.atomic().set(("a",), {"n": 1}).set(("b",), [1, 2]).commit()
            await kv.atomic().delete(("b",)).commit()

        async with await open_kv(temp_dir) as kv:
            entry = await kv.get(("a",))
            assert entry.value == {"n": 1}
            assert entry.versionstamp == result.versionstamp
            assert not (await kv.get(("b",))).exists

    async def test_versionstamps_continue_after_reopen(self, temp_dir):
        async with await open_kv(temp_dir) as kv:
            first = await kv.atomic().set(("a",), 1).commit()

        async with await open_kv(temp_dir) as kv:
            second = await kv.atomic().set(("a",), 2).commit()

        assert second.versionstamp > first.versionstamp

    async def test_failed_check_not_logged(self, temp_dir):
        """Test that rejected commits leave no trace after reopen."""
        async with await open_kv(temp_dir) as kv:
            await kv.atomic().set(("a",), 1).commit()
            await kv.atomic().check(("a",), None).set(("a",), 2).commit()

        async with await open_kv(temp_dir) as kv:
            assert (await kv.get(("a",))).value == 1

    async def test_unserializable_value_rejected(self, temp_dir):
        """Test that a value the WAL cannot hold is refused before applying."""
        async with await open_kv(temp_dir) as kv:
            with pytest.raises(TypeError):
                await kv.atomic().set(("a",), object()).commit()
            assert not (await kv.get(("a",))).exists

    async def test_structured_kv_survives_reopen(self, temp_dir):
        """Test that values and counters are rebuilt from the WAL."""
        async with await open_kv(temp_dir, fsync_interval_ms=50) as kv:
            skv = StructuredKv(kv)
            await skv.set(["A", "B"], "1")
            await skv.set(["A", "B", "C1"], "ABC1")
            await skv.set(["A", "B", "C2"], "ABC2")
            await skv.delete(["A", "B", "C1"])

        async with await open_kv(temp_dir) as kv:
            skv = StructuredKv(kv)
            structure = await skv.structure()
            assert structure.to_dict() == {"A": {"_v": 1, "B": {"_v": 1}}}
            assert (await skv.get(["A", "B", "C2"])).value == "ABC2"

    async def test_compact(self, temp_dir):
        """Test that compaction shrinks the log and keeps live data."""
        async with await open_kv(temp_dir) as kv:
            for i in range(20):
                await kv.atomic().set(("k",), i).commit()
            await kv.atomic().set(("other",), "x").commit()
            await kv.atomic().delete(("other",)).commit()

            wal_path = os.path.join(kv.storage_dir, KvStore.WAL_FILENAME)
            size_before = os.path.getsize(wal_path)
            version = kv.versionstamp

            await kv.compact()

            assert os.path.getsize(wal_path) < size_before
            # The store stays writable after the log swap
            await kv.atomic().set(("after",), True).commit()

        entries = list(WAL(file_path=wal_path))
        assert len(entries) == 2
        assert entries[0].versionstamp == version

        async with await open_kv(temp_dir) as kv:
            assert (await kv.get(("k",))).value == 19
            assert (await kv.get(("after",))).value is True
            assert not (await kv.get(("other",))).exists
            assert kv.size() == 2

    async def test_compact_in_memory_is_noop(self, store):
        await store.atomic().set(("k",), 1).commit()
        await store.compact()
        assert (await store.get(("k",))).value == 1

    async def test_torn_tail_survives_later_commits(self, temp_dir):
        """Test reopening after a crash mid-append, committing, and reopening again."""
        async with await open_kv(temp_dir) as kv:
            skv = StructuredKv(kv)
            await skv.set(["A", "B"], 1)
            await skv.set(["A", "C"], 2)

        wal_path = os.path.join(temp_dir, KvStore.WAL_FILENAME)
        with open(wal_path, "r+b") as f:
            f.truncate(os.path.getsize(wal_path) - 3)

        async with await open_kv(temp_dir) as kv:
            skv = StructuredKv(kv)
            assert not (await skv.get(["A", "C"])).exists
            assert (await skv.set(["A", "D"], 3)).ok

        async with await open_kv(temp_dir) as kv:
            skv = StructuredKv(kv)
            assert (await skv.get(["A", "B"])).value == 1
            assert (await skv.get(["A", "D"])).value == 3
            assert (await kv.get(("SYSTEM", "A"))).value == 2

    async def test_check_only_commit_keeps_versionstamps_monotonic(self, temp_dir):
        """Test that versionstamps never go backwards across a reopen."""
        async with await open_kv(temp_dir) as kv:
            written = await kv.atomic().set(("a",), 1).commit()
            checked = await kv.atomic().check(("a",), written.versionstamp).commit()
            assert checked.ok
            assert checked.versionstamp == written.versionstamp

        async with await open_kv(temp_dir) as kv:
            assert kv.versionstamp == checked.versionstamp
            after = await kv.atomic().set(("b",), 2).commit()
            assert after.versionstamp > checked.versionstamp

    async def test_corrupt_log_fails_open(self, temp_dir):
        async with await open_kv(temp_dir) as kv:
            await kv.atomic().set(("a",), 1).commit()

        wal_path = os.path.join(temp_dir, KvStore.WAL_FILENAME)
        with open(wal_path, "r+b") as f:
            f.seek(12)
            byte = f.read(1)
            f.seek(12)
            f.write(bytes([byte[0] ^ 0xFF]))

        with pytest.raises(WALCorruptionError):
            await open_kv(temp_dir)
