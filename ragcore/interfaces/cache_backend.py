"""Abstract base class for the persistent tier of the embedding cache.

The :class:`~ragcore.services.embedding.embedding_cache.EmbeddingCache`
keeps a bounded in-process LRU in front of one of these backends.  Keys
are already-derived content hashes; backends store vectors without any
interpretation and must return them bit-identical.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from ragcore.models.embedding import CacheEntry


# Concrete implementations (ragcore/providers/cache/):
#   SQLiteCacheBackend  -- aiosqlite file, survives restarts
#   MemoryCacheBackend  -- dict, for tests and throwaway runs
class ICacheBackend(ABC):
    """Contract for persistent embedding-cache storage."""

    @abstractmethod
    async def open(self) -> None:
        """Acquire resources (connections, tables).  Idempotent."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources.  Idempotent."""

    @abstractmethod
    async def get(self, key: str) -> CacheEntry | None:
        """Return the entry for *key* and bump its access count, or ``None`` on a miss."""

    @abstractmethod
    async def put(self, entry: CacheEntry) -> None:
        """Write *entry*.  Writing an existing key again is an idempotent overwrite."""

    @abstractmethod
    async def delete(self, keys: list[str]) -> int:
        """Remove the given keys; return how many existed."""

    @abstractmethod
    def iter_entries(self) -> AsyncIterator[CacheEntry]:
        """Yield every stored entry (used by predicate eviction)."""

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored entries."""
