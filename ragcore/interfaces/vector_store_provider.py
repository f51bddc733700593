"""Abstract base class for vector-store service providers.

Defines the contract for persisting chunks with their relations and per-type
embeddings, and for querying them by similarity or keyword.  Implementations
may wrap ChromaDB, an in-memory numpy index, or any other vector-capable
store; only the logical chunk schema and query contract below are required.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragcore.models.chunk import Chunk, EmbeddingType
from ragcore.models.retrieval import ChunkFilter, ScoredChunk


# Concrete implementations (ragcore/providers/vector_store/):
#   ChromaDBProvider           -- persistent, one collection per embedding type
#   MemoryVectorStoreProvider  -- in-process numpy cosine search
class IVectorStoreProvider(ABC):
    """Contract for vector stores used by ingestion and retrieval.

    All methods are async so network-backed stores never block the event
    loop.  Every method raises
    :class:`~ragcore.utils.errors.StoreUnavailableError` when the backend
    cannot be reached; none of them may answer an outage with an empty
    result.

    **Filters.** :class:`~ragcore.models.retrieval.ChunkFilter` carries the
    supported predicates: ``source_ids``, a ``quality_score`` range, an
    ``ingested_at`` date range and ``scale_types``.
    """

    @abstractmethod
    async def upsert_chunks(self, chunks: list[Chunk]) -> int:
        """Insert or replace chunks, including whatever embeddings they carry.

        Chunks without an embedding for a type are simply not searchable by
        that type; they remain retrievable by ID.

        Returns
        -------
        int
            Number of chunks written.
        """

    @abstractmethod
    async def query(
        self,
        embedding_type: EmbeddingType,
        vector: list[float],
        top_k: int = 10,
        filters: ChunkFilter | None = None,
    ) -> list[ScoredChunk]:
        """Similarity search against one embedding type.

        Parameters
        ----------
        embedding_type:
            Which vector view to search.
        vector:
            The query vector.
        top_k:
            Maximum number of results.
        filters:
            Optional metadata predicates.

        Returns
        -------
        list[ScoredChunk]
            Results ranked by cosine similarity (descending, clamped to
            [0, 1]), ties broken by ``chunk_id``.
        """

    @abstractmethod
    async def keyword_search(
        self,
        terms: list[str],
        top_k: int = 10,
        filters: ChunkFilter | None = None,
    ) -> list[ScoredChunk]:
        """Lexical search: chunks containing any of *terms*, scored by term overlap."""

    @abstractmethod
    async def get_chunks(self, chunk_ids: list[str]) -> list[Chunk]:
        """Return the chunks with the given IDs, in input order, skipping unknown IDs."""

    @abstractmethod
    async def get_source_chunks(self, source_id: str) -> list[Chunk]:
        """Return every chunk of a source ordered by ``sequence_order``."""

    @abstractmethod
    async def list_chunks(self) -> list[Chunk]:
        """Return every chunk in the store, ordered by source and sequence."""

    @abstractmethod
    async def delete_by_source(self, source_id: str) -> int:
        """Delete all chunks of a source; return how many were removed."""

    @abstractmethod
    async def delete_chunks(self, chunk_ids: list[str]) -> int:
        """Delete the chunks with the given IDs, with every embedding they carry.

        Unknown IDs are ignored.

        Returns
        -------
        int
            Number of chunks removed.
        """

    @abstractmethod
    async def get_source_ids(self) -> set[str]:
        """Return the IDs of every source with at least one stored chunk."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"chromadb"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the store is reachable."""
