"""
Abstract base classes for the ordered store and its sorted containers.
"""

from structured_kv.interfaces.kv_store import OrderedKvStore
from structured_kv.interfaces.sorted_container import SortedContainer

__all__ = ["OrderedKvStore", "SortedContainer"]
