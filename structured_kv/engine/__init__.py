"""
Ordered store engine and the structured namespace layer built on it.
"""

from structured_kv.engine.store import KvStore, open_kv
from structured_kv.engine.structured_kv import StructuredKv

__all__ = ["KvStore", "StructuredKv", "open_kv"]
