"""Two-tier embedding cache.

Tier 1 is a bounded in-process ``cachetools`` LRU (a ``TTLCache`` when a
TTL is configured).  Tier 2 is an :class:`~ragcore.interfaces.cache_backend.ICacheBackend`
that survives restarts.  Reads go tier 1 -> tier 2; a tier-2 hit is copied
into tier 1.  Writes go to both tiers.

Keys are derived from ``(normalized text, embedding type, model name)`` so a
model switch never serves stale vectors.

The cache is an explicit service: :meth:`open` must be awaited before use
and :meth:`close` releases the backend.  Tier 1 is only touched from the
event-loop thread, so it needs no lock.
"""

from __future__ import annotations

import json
from collections import Counter
from collections.abc import Callable

import structlog
from cachetools import Cache, LRUCache, TTLCache

from ragcore.interfaces.cache_backend import ICacheBackend
from ragcore.models.chunk import EmbeddingType
from ragcore.models.embedding import CacheEntry
from ragcore.utils.text import normalize_text, sha256_hex

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingCache:
    """Read-through, write-through vector cache.

    Parameters
    ----------
    backend:
        Persistent tier.  ``None`` runs tier 1 only.
    max_entries:
        Capacity of the in-process tier.
    ttl_seconds:
        Optional lifetime of tier-1 entries.  Tier 2 entries do not expire;
        use :meth:`evict` to prune them.
    """

    def __init__(
        self,
        backend: ICacheBackend | None = None,
        max_entries: int = 10_000,
        ttl_seconds: int | None = None,
    ) -> None:
        self._backend = backend
        if ttl_seconds:
            self._memory: Cache = TTLCache(maxsize=max_entries, ttl=ttl_seconds)
        else:
            self._memory = LRUCache(maxsize=max_entries)
        self._reads: Counter[str] = Counter()
        self._opened = False
        self._hits = 0
        self._misses = 0
        self._memory_hits = 0
        self._backend_hits = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._opened:
            return
        if self._backend is not None:
            await self._backend.open()
        self._opened = True
        logger.debug("embedding_cache_opened", backend=type(self._backend).__name__ if self._backend else None)

    async def close(self) -> None:
        if not self._opened:
            return
        if self._backend is not None:
            await self._backend.close()
        self._opened = False

    @property
    def is_open(self) -> bool:
        return self._opened

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    @staticmethod
    def make_key(text: str, embedding_type: EmbeddingType | str, model: str) -> str:
        """Derive the cache key for one embedding input.

        The JSON array encoding keeps field boundaries unambiguous, so
        ``("ab", "c")`` and ``("a", "bc")`` never collide.
        """
        kind = embedding_type.value if isinstance(embedding_type, EmbeddingType) else str(embedding_type)
        return sha256_hex(json.dumps([normalize_text(text), kind, model], ensure_ascii=False))

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> list[float] | None:
        """Return the cached vector for *key*, or ``None`` on a miss."""
        entry: CacheEntry | None = self._memory.get(key)
        if entry is not None:
            # Stored entry stays untouched so its TTL keeps running from put().
            self._reads[key] += 1
            if len(self._reads) > self._memory.maxsize:
                self._prune_reads()
            self._hits += 1
            self._memory_hits += 1
            return list(entry.vector)

        if self._backend is not None and self._opened:
            entry = await self._backend.get(key)
            if entry is not None:
                self._memory[key] = entry
                self._reads.pop(key, None)
                self._hits += 1
                self._backend_hits += 1
                return list(entry.vector)

        self._misses += 1
        return None

    async def put(self, key: str, vector: list[float]) -> None:
        """Store *vector* under *key* in both tiers."""
        entry = CacheEntry(key=key, vector=list(vector))
        self._memory[key] = entry
        self._reads.pop(key, None)
        if self._backend is not None and self._opened:
            await self._backend.put(entry)

    def _memory_entry(self, key: str, entry: CacheEntry) -> CacheEntry:
        reads = self._reads.get(key, 0)
        if not reads:
            return entry
        return entry.model_copy(update={"access_count": entry.access_count + reads})

    def _prune_reads(self) -> None:
        for key in [k for k in self._reads if k not in self._memory]:
            del self._reads[key]

    async def evict(self, predicate: Callable[[CacheEntry], bool]) -> int:
        """Remove every entry for which *predicate* returns ``True``.

        Tier-1 entries keep their original ``created_at`` and their own
        ``access_count``, so age- and usage-based predicates apply to both
        tiers.  Returns the number of distinct keys removed.
        """
        doomed: set[str] = set()
        for key, entry in list(self._memory.items()):
            if predicate(self._memory_entry(key, entry)):
                doomed.add(key)
        backend_keys: list[str] = []
        if self._backend is not None and self._opened:
            async for entry in self._backend.iter_entries():
                if predicate(entry):
                    backend_keys.append(entry.key)
            doomed.update(backend_keys)
            if backend_keys:
                await self._backend.delete(backend_keys)
        for key in doomed:
            self._memory.pop(key, None)
            self._reads.pop(key, None)
        self._prune_reads()
        logger.info("embedding_cache_evicted", count=len(doomed))
        return len(doomed)

    async def clear(self) -> int:
        return await self.evict(lambda _entry: True)

    async def stats(self) -> dict[str, int]:
        persisted = await self._backend.count() if self._backend is not None and self._opened else 0
        return {
            "hits": self._hits,
            "misses": self._misses,
            "memory_hits": self._memory_hits,
            "backend_hits": self._backend_hits,
            "memory_entries": len(self._memory),
            "persisted_entries": persisted,
        }
