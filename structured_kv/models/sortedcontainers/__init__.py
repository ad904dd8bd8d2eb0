"""
Sorted container implementations for the ordered store.
"""

from structured_kv.models.sortedcontainers.sorted_key_list import SortedKeyList

__all__ = ["SortedKeyList"]
