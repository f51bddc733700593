"""In-process vector store using numpy cosine similarity.

Holds every chunk in a dict and answers similarity queries with a single
matrix product per embedding type.  Intended for tests, notebooks and small
corpora; swap for :class:`ChromaDBProvider` for persistence.
"""

from __future__ import annotations

import numpy as np
import structlog

from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
from ragcore.models.chunk import Chunk, EmbeddingType
from ragcore.models.retrieval import ChunkFilter, ScoredChunk
from ragcore.utils.text import keyword_score

logger = structlog.get_logger(logger_name=__name__)


class MemoryVectorStoreProvider(IVectorStoreProvider):
    """Dict-backed :class:`IVectorStoreProvider`."""

    def __init__(self) -> None:
        self._chunks: dict[str, Chunk] = {}

    async def upsert_chunks(self, chunks: list[Chunk]) -> int:
        for chunk in chunks:
            self._chunks[chunk.chunk_id] = chunk
        return len(chunks)

    def _candidates(self, filters: ChunkFilter | None) -> list[Chunk]:
        chunks = sorted(self._chunks.values(), key=lambda c: c.chunk_id)
        if filters is None or filters.is_empty():
            return chunks
        return [c for c in chunks if filters.matches(c)]

    async def query(
        self,
        embedding_type: EmbeddingType,
        vector: list[float],
        top_k: int = 10,
        filters: ChunkFilter | None = None,
    ) -> list[ScoredChunk]:
        embedding_type = EmbeddingType(embedding_type)
        candidates = [c for c in self._candidates(filters) if c.has_embedding(embedding_type)]
        if not candidates or top_k <= 0:
            return []

        query = np.asarray(vector, dtype=np.float64)
        matrix = np.asarray([c.embeddings[embedding_type] for c in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        with np.errstate(divide="ignore", invalid="ignore"):
            sims = np.where(norms > 0, matrix @ query / norms, 0.0)
        sims = np.clip(np.nan_to_num(sims, nan=0.0), 0.0, 1.0)

        scored = [ScoredChunk(chunk=c, score=float(s)) for c, s in zip(candidates, sims)]
        scored.sort(key=lambda s: (-s.score, s.chunk.chunk_id))
        return scored[:top_k]

    async def keyword_search(
        self,
        terms: list[str],
        top_k: int = 10,
        filters: ChunkFilter | None = None,
    ) -> list[ScoredChunk]:
        terms = [t.lower() for t in terms if t.strip()]
        if not terms or top_k <= 0:
            return []
        scored = []
        for chunk in self._candidates(filters):
            score = keyword_score(terms, chunk.content)
            if score > 0:
                scored.append(ScoredChunk(chunk=chunk, score=score))
        scored.sort(key=lambda s: (-s.score, s.chunk.chunk_id))
        return scored[:top_k]

    async def get_chunks(self, chunk_ids: list[str]) -> list[Chunk]:
        return [self._chunks[cid] for cid in chunk_ids if cid in self._chunks]

    async def get_source_chunks(self, source_id: str) -> list[Chunk]:
        return sorted(
            (c for c in self._chunks.values() if c.source_id == source_id),
            key=lambda c: c.sequence_order,
        )

    async def list_chunks(self) -> list[Chunk]:
        return sorted(self._chunks.values(), key=lambda c: (c.source_id, c.sequence_order))

    async def delete_by_source(self, source_id: str) -> int:
        doomed = [cid for cid, c in self._chunks.items() if c.source_id == source_id]
        for cid in doomed:
            del self._chunks[cid]
        logger.debug("memory_store_delete_by_source", source_id=source_id, deleted_count=len(doomed))
        return len(doomed)

    async def delete_chunks(self, chunk_ids: list[str]) -> int:
        removed = 0
        for cid in set(chunk_ids):
            if self._chunks.pop(cid, None) is not None:
                removed += 1
        return removed

    async def get_source_ids(self) -> set[str]:
        return {c.source_id for c in self._chunks.values()}

    def get_provider_name(self) -> str:
        return "memory"

    def is_available(self) -> bool:
        return True
