"""In-memory persistent-tier stand-in for the embedding cache.

Suitable for tests and single-run scripts: entries live as long as the
process.  Swap for :class:`SQLiteCacheBackend` to survive restarts.
"""

from __future__ import annotations

from collections.abc import AsyncIterator

from ragcore.interfaces.cache_backend import ICacheBackend
from ragcore.models.embedding import CacheEntry


class MemoryCacheBackend(ICacheBackend):
    """Dict-backed :class:`ICacheBackend`."""

    def __init__(self) -> None:
        self._entries: dict[str, CacheEntry] = {}
        self._open = False

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False

    async def get(self, key: str) -> CacheEntry | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        entry = entry.model_copy(update={"access_count": entry.access_count + 1})
        self._entries[key] = entry
        return entry

    async def put(self, entry: CacheEntry) -> None:
        self._entries[entry.key] = entry

    async def delete(self, keys: list[str]) -> int:
        removed = 0
        for key in keys:
            if self._entries.pop(key, None) is not None:
                removed += 1
        return removed

    async def iter_entries(self) -> AsyncIterator[CacheEntry]:
        for entry in list(self._entries.values()):
            yield entry

    async def count(self) -> int:
        return len(self._entries)
