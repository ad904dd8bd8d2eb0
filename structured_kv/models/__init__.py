"""
Data models for the structured store.
"""

from structured_kv.models.entry import KvCommitResult, KvEntry, KvListSelector
from structured_kv.models.structure import StructureNode
from structured_kv.models.value import Value
from structured_kv.models.wal import WAL
from structured_kv.models.wal_entry import WALEntry

__all__ = [
    "KvCommitResult",
    "KvEntry",
    "KvListSelector",
    "StructureNode",
    "Value",
    "WAL",
    "WALEntry",
]
