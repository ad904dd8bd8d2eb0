"""
Entry, commit result and selector types exchanged with the ordered store.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from enum import IntEnum
from typing import Any

from structured_kv.models.key_codec import KvKey


@dataclass(frozen=True)
class KvEntry:
    """
    A key with its value and versionstamp.

    A lookup of an absent key returns an entry whose ``value`` and
    ``versionstamp`` are both None.
    """

    key: KvKey
    value: Any = None
    versionstamp: str | None = None

    @property
    def exists(self) -> bool:
        return self.versionstamp is not None


KvEntryMaybe = KvEntry


@dataclass(frozen=True)
class KvCommitResult:
    """Outcome of an atomic commit. Truthy when the commit was applied."""

    ok: bool
    versionstamp: str | None = None

    def __bool__(self) -> bool:
        return self.ok


@dataclass(frozen=True)
class KvCheck:
    """Commit precondition: ``key`` must currently carry ``versionstamp`` (None = absent)."""

    key: KvKey
    versionstamp: str | None


class MutationType(IntEnum):
    """Kind of write carried by an atomic commit."""

    SET = 0
    DELETE = 1


@dataclass(frozen=True)
class Mutation:
    key: KvKey
    type: MutationType
    value: Any = None


@dataclass(frozen=True)
class KvListSelector:
    """
    Range selection for list operations.

    Either ``prefix`` (every key strictly below it, optionally narrowed by
    ``start``/``end``) or a half-open ``[start, end)`` interval.
    """

    start: Sequence[str] | None = None
    end: Sequence[str] | None = None
    prefix: Sequence[str] | None = None
