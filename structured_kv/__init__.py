"""
Hierarchical key-value namespace over a flat, ordered key-value store.

This package provides:
- StructuredKv.set(key, value) - write a value and count it under its prefix
- StructuredKv.get(key) - read a value
- StructuredKv.delete(key) - remove a value and uncount it
- StructuredKv.list(selector) - range scan over logical keys
- StructuredKv.structure(prefix) - tree of direct-child counts
- KvStore / open_kv - ordered store with versionstamped atomic commits
"""

from structured_kv.engine.store import KvStore, open_kv
from structured_kv.engine.structured_kv import StructuredKv
from structured_kv.models.entry import KvCommitResult, KvEntry, KvListSelector
from structured_kv.models.exceptions import (
    InvalidKeyError,
    StoreClosedError,
    StructuredKvError,
    WALCorruptionError,
)
from structured_kv.models.key_codec import (
    decorate_data_key,
    decorate_system_key,
    undecorate_data_key,
)
from structured_kv.models.structure import StructureNode

__all__ = [
    "InvalidKeyError",
    "KvCommitResult",
    "KvEntry",
    "KvListSelector",
    "KvStore",
    "StoreClosedError",
    "StructureNode",
    "StructuredKv",
    "StructuredKvError",
    "WALCorruptionError",
    "decorate_data_key",
    "decorate_system_key",
    "open_kv",
    "undecorate_data_key",
]
