"""
Key codec mapping logical hierarchical keys onto physical store keys.

A logical key is a non-empty sequence of string segments. It is stored under
two physical forms:

- the data key ``("DATA", *prefix, "v~" + leaf + "!v")`` holding the value;
- the system key ``("SYSTEM", *prefix)`` holding the number of direct
  children of ``prefix``.

Wrapping the leaf keeps a node's own value key from overlapping the keys of
its children within the same prefix namespace.
"""

from collections.abc import Sequence

from structured_kv.models.exceptions import InvalidKeyError

SYSTEM_TAG = "SYSTEM"
DATA_TAG = "DATA"

LEAF_OPEN = "v~"
LEAF_CLOSE = "!v"

KvKey = tuple[str, ...]


def normalize_key(key: Sequence[str]) -> KvKey:
    """
    Validate a logical key and return it as a tuple.

    Raises:
        InvalidKeyError: If the key is a bare string, empty, or has a
            non-string segment.
    """
    if isinstance(key, (str, bytes)):
        raise InvalidKeyError(key, "expected a sequence of segments, not a string")
    segments = tuple(key)
    if not segments:
        raise InvalidKeyError(key, "key must have at least one segment")
    for segment in segments:
        if not isinstance(segment, str):
            raise InvalidKeyError(key, f"segment {segment!r} is not a string")
    return segments


def wrap_leaf(leaf: str) -> str:
    return f"{LEAF_OPEN}{leaf}{LEAF_CLOSE}"


def unwrap_leaf(segment: str) -> str:
    """Strip exactly one leaf wrapper from a physical segment."""
    if (
        len(segment) < len(LEAF_OPEN) + len(LEAF_CLOSE)
        or not segment.startswith(LEAF_OPEN)
        or not segment.endswith(LEAF_CLOSE)
    ):
        raise InvalidKeyError(segment, "segment is not a wrapped leaf")
    return segment[len(LEAF_OPEN) : -len(LEAF_CLOSE)]


def decorate_system_key(key: Sequence[str]) -> KvKey:
    """Return the system key tracking the child count of ``key``'s prefix."""
    segments = normalize_key(key)
    return (SYSTEM_TAG, *segments[:-1])


def decorate_data_key(key: Sequence[str]) -> KvKey:
    """Return the data key under which the value of ``key`` is stored."""
    segments = normalize_key(key)
    return (DATA_TAG, *segments[:-1], wrap_leaf(segments[-1]))


def undecorate_data_key(physical_key: Sequence[str]) -> KvKey:
    """
    Map a physical data key back to its logical key.

    Segments are taken as they are; only the tag is dropped and only the last
    segment is unwrapped, so keys containing ``,``, ``v~`` or ``!v`` decode
    unambiguously.

    Raises:
        InvalidKeyError: If the key is not a data key.
    """
    segments = tuple(physical_key)
    if len(segments) < 2 or segments[0] != DATA_TAG:
        raise InvalidKeyError(physical_key, f"not a {DATA_TAG} key")
    return (*segments[1:-1], unwrap_leaf(segments[-1]))


def prefix_end(prefix: Sequence[str]) -> KvKey | None:
    """
    Return the smallest key sorting after every key that starts with ``prefix``.

    Returns None for the empty prefix, which has no upper bound.
    """
    segments = tuple(prefix)
    if not segments:
        return None
    return (*segments[:-1], segments[-1] + "\x00")
