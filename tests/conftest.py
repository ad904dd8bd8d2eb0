"""
Shared pytest fixtures for the structured store tests.
"""

import asyncio
import tempfile

import pytest
import pytest_asyncio

from structured_kv.engine.store import KvStore
from structured_kv.engine.structured_kv import StructuredKv


class YieldingKvStore(KvStore):
    """
    KvStore that yields to the event loop on every read.

    In-memory reads never suspend, so concurrent callers would otherwise run
    one after another. Yielding between a read and whatever follows it lets
    other callers commit in that gap, so their read-then-commit spans overlap.
    """

    async def get(self, key):
        entry = await super().get(key)
        await asyncio.sleep(0)
        return entry


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest_asyncio.fixture
async def store():
    """Provide an in-memory KvStore."""
    async with KvStore() as kv:
        yield kv


@pytest_asyncio.fixture
async def skv(store):
    """Provide a StructuredKv over the in-memory store."""
    return StructuredKv(store)


@pytest_asyncio.fixture
async def interleaving_store():
    """Provide an in-memory store whose reads interleave with concurrent callers."""
    async with YieldingKvStore() as kv:
        yield kv


@pytest_asyncio.fixture
async def interleaving_skv(interleaving_store):
    """Provide a StructuredKv over the interleaving store."""
    return StructuredKv(interleaving_store, max_retries=50, retry_backoff_ms=0)


@pytest_asyncio.fixture
async def populated(skv):
    """StructuredKv holding a node, two children and one grandchild."""
    await skv.set(["A", "B"], "1")
    await skv.set(["A", "B", "C1"], "ABC1")
    await skv.set(["A", "B", "C2"], "ABC2")
    await skv.set(["A", "B", "C2", "D"], "ABCD2")
    return skv
