"""Public interface definitions for every external collaborator.

Business logic (chunking, embedding, retrieval, validation, orchestration)
talks to external services only through the abstract base classes in this
package.  Concrete adapters live in ``ragcore/providers/`` and are injected
at construction time, so swapping ChromaDB for another store or OpenAI for a
local model touches one factory function in ``ragcore/main.py``, and tests
can inject fakes without network access.

CONCRETE PROVIDER MAP:
    Interface               ->  Concrete implementations (ragcore/providers/)
    -----------------------------------------------------------------------
    IEmbeddingProvider      ->  OpenAIEmbeddingProvider, FastEmbedEmbeddingProvider
    IVectorStoreProvider    ->  ChromaDBProvider, MemoryVectorStoreProvider
    ICacheBackend           ->  SQLiteCacheBackend, MemoryCacheBackend
    IDocumentLoader         ->  TextFileLoader
    ISourceRegistry         ->  SQLiteSourceRegistry
"""

from ragcore.interfaces.cache_backend import ICacheBackend
from ragcore.interfaces.document_loader import IDocumentLoader
from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.interfaces.source_registry import ISourceRegistry
from ragcore.interfaces.vector_store_provider import IVectorStoreProvider

__all__ = [
    "ICacheBackend",
    "IDocumentLoader",
    "IEmbeddingProvider",
    "ISourceRegistry",
    "IVectorStoreProvider",
]
