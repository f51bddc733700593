"""Unit tests for SQLiteCacheBackend.

Uses a temp directory to avoid polluting the real data directory.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from ragcore.models.embedding import CacheEntry
from ragcore.providers.cache.sqlite_cache_backend import SQLiteCacheBackend
from ragcore.utils.errors import ConfigurationError


@pytest_asyncio.fixture
async def backend(tmp_path):
    b = SQLiteCacheBackend(db_path=tmp_path / "cache" / "embeddings.db")
    await b.open()
    yield b
    await b.close()


@pytest.mark.asyncio
async def test_round_trip_is_bit_identical(backend) -> None:
    vector = [0.1, 1 / 3, -2.5e-17, 123456.789012345]
    await backend.put(CacheEntry(key="k", vector=vector))

    entry = await backend.get("k")
    assert entry is not None
    assert entry.vector == vector


@pytest.mark.asyncio
async def test_get_bumps_access_count(backend) -> None:
    await backend.put(CacheEntry(key="k", vector=[1.0]))
    first = await backend.get("k")
    second = await backend.get("k")
    assert first.access_count == 1
    assert second.access_count == 2


@pytest.mark.asyncio
async def test_missing_key(backend) -> None:
    assert await backend.get("nope") is None


@pytest.mark.asyncio
async def test_put_is_idempotent_overwrite(backend) -> None:
    await backend.put(CacheEntry(key="k", vector=[1.0]))
    await backend.put(CacheEntry(key="k", vector=[1.0]))
    assert await backend.count() == 1


@pytest.mark.asyncio
async def test_delete_and_count(backend) -> None:
    for key in ("a", "b", "c"):
        await backend.put(CacheEntry(key=key, vector=[0.5]))

    assert await backend.delete(["a", "c", "missing"]) == 2
    assert await backend.count() == 1
    assert await backend.delete([]) == 0


@pytest.mark.asyncio
async def test_iter_entries(backend) -> None:
    await backend.put(CacheEntry(key="a", vector=[1.0, 2.0]))
    await backend.put(CacheEntry(key="b", vector=[3.0, 4.0]))

    entries = [entry async for entry in backend.iter_entries()]
    assert {e.key: e.vector for e in entries} == {"a": [1.0, 2.0], "b": [3.0, 4.0]}


@pytest.mark.asyncio
async def test_survives_reopen(tmp_path) -> None:
    path = tmp_path / "embeddings.db"
    first = SQLiteCacheBackend(db_path=path)
    await first.open()
    await first.put(CacheEntry(key="k", vector=[0.25, 0.75]))
    await first.close()

    second = SQLiteCacheBackend(db_path=path)
    await second.open()
    entry = await second.get("k")
    await second.close()
    assert entry is not None
    assert entry.vector == [0.25, 0.75]


@pytest.mark.asyncio
async def test_use_before_open_raises(tmp_path) -> None:
    b = SQLiteCacheBackend(db_path=tmp_path / "never_opened.db")
    with pytest.raises(ConfigurationError, match="not open"):
        await b.get("k")
