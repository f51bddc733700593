"""Vector store implementations of IVectorStoreProvider.

    ChromaDBProvider           -- persistent, one collection per embedding type
    MemoryVectorStoreProvider  -- in-process numpy cosine search
"""

from ragcore.providers.vector_store.chromadb_provider import ChromaDBProvider
from ragcore.providers.vector_store.memory_vector_store import MemoryVectorStoreProvider

__all__ = ["ChromaDBProvider", "MemoryVectorStoreProvider"]
