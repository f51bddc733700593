from ragcore.providers.registry.sqlite_source_registry import SQLiteSourceRegistry

__all__ = ["SQLiteSourceRegistry"]
