"""
Value and versionstamp helpers for data held by the ordered store.
"""

import json
from dataclasses import dataclass
from typing import Any

VERSIONSTAMP_WIDTH = 20


def format_versionstamp(version: int) -> str:
    """Render a commit version as a fixed-width, order-preserving hex string."""
    return f"{version:0{VERSIONSTAMP_WIDTH}x}"


def parse_versionstamp(versionstamp: str) -> int:
    return int(versionstamp, 16)


@dataclass
class Value:
    """
    A stored value together with the versionstamp of the commit that wrote it.

    Attributes:
        data: The user value. Must be JSON-serialisable to be persisted.
        versionstamp: Versionstamp of the writing commit.
    """

    data: Any
    versionstamp: str

    def __bytes__(self) -> bytes:
        """
        Serialize to bytes for storage.

        Format: [vs_len:4][versionstamp][data_len:4][json data]

        Raises:
            TypeError: If ``data`` is not JSON serializable.
        """
        try:
            data_bytes = json.dumps(self.data, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise TypeError(
                f"Value of type {type(self.data).__name__} is not JSON serializable"
            ) from e

        vs_bytes = self.versionstamp.encode("utf-8")
        return (
            len(vs_bytes).to_bytes(4, "big")
            + vs_bytes
            + len(data_bytes).to_bytes(4, "big")
            + data_bytes
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> "Value":
        """Deserialize from bytes."""
        offset = 0

        vs_len = int.from_bytes(data[offset : offset + 4], "big")
        offset += 4
        versionstamp = data[offset : offset + vs_len].decode("utf-8")
        offset += vs_len

        data_len = int.from_bytes(data[offset : offset + 4], "big")
        offset += 4
        value_data = json.loads(data[offset : offset + data_len].decode("utf-8"))

        return cls(data=value_data, versionstamp=versionstamp)
