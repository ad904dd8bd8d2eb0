"""
WALEntry dataclass for Write-Ahead Log records.
"""

from dataclasses import dataclass, field

from structured_kv.models.entry import Mutation, MutationType
from structured_kv.models.key_codec import KvKey
from structured_kv.models.value import Value, format_versionstamp


def encode_key(key: KvKey) -> bytes:
    """Format: [segment_count:4]([segment_len:4][segment])*"""
    parts = [len(key).to_bytes(4, "big")]
    for segment in key:
        segment_bytes = segment.encode("utf-8")
        parts.append(len(segment_bytes).to_bytes(4, "big"))
        parts.append(segment_bytes)
    return b"".join(parts)


def decode_key(data: bytes, offset: int) -> tuple[KvKey, int]:
    """Decode a key starting at ``offset``; returns the key and the new offset."""
    count = int.from_bytes(data[offset : offset + 4], "big")
    offset += 4
    segments = []
    for _ in range(count):
        seg_len = int.from_bytes(data[offset : offset + 4], "big")
        offset += 4
        segments.append(data[offset : offset + seg_len].decode("utf-8"))
        offset += seg_len
    return tuple(segments), offset


@dataclass
class WALEntry:
    """
    Represents one applied atomic commit in the Write-Ahead Log.

    Attributes:
        seq: Commit version; the versionstamp of every value it wrote.
        mutations: Sets and deletes applied together by the commit.
    """

    seq: int
    mutations: list[Mutation] = field(default_factory=list)

    @property
    def versionstamp(self) -> str:
        return format_versionstamp(self.seq)

    def __bytes__(self) -> bytes:
        """
        Serialize the entry to bytes for storage.

        Format: [seq:8][count:4]([type:1][key][value_len:4][value_bytes])*
        """
        parts = [self.seq.to_bytes(8, "big"), len(self.mutations).to_bytes(4, "big")]
        for mutation in self.mutations:
            parts.append(mutation.type.to_bytes(1, "big"))
            parts.append(encode_key(mutation.key))
            if mutation.type == MutationType.SET:
                value_bytes = bytes(Value(mutation.value, self.versionstamp))
            else:
                value_bytes = b""
            parts.append(len(value_bytes).to_bytes(4, "big"))
            parts.append(value_bytes)
        return b"".join(parts)

    @classmethod
    def from_bytes(cls, data: bytes) -> "WALEntry":
        """Deserialize from bytes."""
        offset = 0

        seq = int.from_bytes(data[offset : offset + 8], "big")
        offset += 8

        count = int.from_bytes(data[offset : offset + 4], "big")
        offset += 4

        mutations = []
        for _ in range(count):
            mutation_type = MutationType(data[offset])
            offset += 1

            key, offset = decode_key(data, offset)

            value_len = int.from_bytes(data[offset : offset + 4], "big")
            offset += 4
            value = None
            if value_len > 0:
                value = Value.from_bytes(data[offset : offset + value_len]).data
            offset += value_len

            mutations.append(Mutation(key=key, type=mutation_type, value=value))

        return cls(seq=seq, mutations=mutations)
