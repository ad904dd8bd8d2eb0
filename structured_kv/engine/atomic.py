"""
AtomicOperation - builder for conditioned all-or-nothing commits.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from structured_kv.models.entry import KvCheck, KvCommitResult, Mutation, MutationType


class _Committer(Protocol):
    async def _commit(
        self, checks: list[KvCheck], mutations: list[Mutation]
    ) -> KvCommitResult: ...


class AtomicOperation:
    """
    Collects checks and mutations, then applies them in one commit.

    Every check must hold at commit time or nothing is written. Calls chain:

        await store.atomic().check(k, None).set(k, v).commit()
    """

    def __init__(self, store: _Committer) -> None:
        self._store = store
        self._checks: list[KvCheck] = []
        self._mutations: list[Mutation] = []
        self._committed = False

    def check(self, key: Sequence[str], versionstamp: str | None) -> "AtomicOperation":
        """Require ``key`` to carry ``versionstamp``; None requires it to be absent."""
        self._checks.append(KvCheck(key=tuple(key), versionstamp=versionstamp))
        return self

    def set(self, key: Sequence[str], value: Any) -> "AtomicOperation":
        self._mutations.append(Mutation(key=tuple(key), type=MutationType.SET, value=value))
        return self

    def delete(self, key: Sequence[str]) -> "AtomicOperation":
        self._mutations.append(Mutation(key=tuple(key), type=MutationType.DELETE))
        return self

    async def commit(self) -> KvCommitResult:
        """
        Apply the collected mutations if every check holds.

        Returns:
            ``KvCommitResult(ok=True, versionstamp=...)`` when applied,
            ``KvCommitResult(ok=False)`` when a check failed.

        Raises:
            RuntimeError: If this operation was already committed.
        """
        if self._committed:
            raise RuntimeError("AtomicOperation already committed")
        self._committed = True
        return await self._store._commit(self._checks, self._mutations)
