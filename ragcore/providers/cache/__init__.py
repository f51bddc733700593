"""Persistent tiers for the embedding cache."""

from ragcore.providers.cache.memory_cache_backend import MemoryCacheBackend
from ragcore.providers.cache.sqlite_cache_backend import SQLiteCacheBackend

__all__ = ["MemoryCacheBackend", "SQLiteCacheBackend"]
