"""ChromaDB vector store provider adapter.

Wraps ``chromadb.PersistentClient`` to implement :class:`IVectorStoreProvider`.
Uses cosine distance for similarity search.  Fully local, no external
service required.

Collection layout (``prefix`` defaults to ``"ragcore"``):

    {prefix}_chunks         one record per chunk: content + full metadata,
                            with a constant placeholder embedding.  Every
                            chunk lives here, embedded or not.
    {prefix}_content        \
    {prefix}_contextual      |  one collection per embedding type holding
    {prefix}_hierarchical    |  only the chunks that have that vector, plus
    {prefix}_semantic       /   the metadata needed for ``where`` filters.

ChromaDB metadata values must be str, int, float or bool, so list-valued
chunk fields (relations, hierarchy path, boundaries) are stored as JSON
strings.  ChromaDB calls are synchronous; they run in a worker thread so a
slow store never blocks the event loop and deadlines can fire.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar

# Disable ChromaDB telemetry before importing chromadb.
os.environ["ANONYMIZED_TELEMETRY"] = "False"

import chromadb
import structlog

from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
from ragcore.models.chunk import Chunk, EmbeddingType, ScaleType, SemanticBoundary
from ragcore.models.embedding import ALL_EMBEDDING_TYPES
from ragcore.models.retrieval import ChunkFilter, ScoredChunk
from ragcore.utils.errors import RagCoreError, StoreUnavailableError
from ragcore.utils.text import keyword_score

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

_PAGE_SIZE = 5000
_UPSERT_BATCH = 500
_PLACEHOLDER_EMBEDDING = [1.0]
_NOT_INGESTED_TS = -1.0


class _NoopEmbeddingFunction(chromadb.EmbeddingFunction[list[str]]):
    """No-op embedding function that prevents ChromaDB from loading a model.

    ragcore always passes pre-computed embeddings, so ChromaDB's built-in
    embedding is never invoked.
    """

    def __call__(self, input: list[str]) -> list[list[float]]:
        raise NotImplementedError(
            "ragcore uses pre-computed embeddings; "
            "ChromaDB's built-in embedding should never be called."
        )

    def name(self) -> str:
        return "noop_precomputed"


class ChromaDBProvider(IVectorStoreProvider):
    """Vector store provider backed by ChromaDB with local persistence.

    Parameters
    ----------
    persist_directory:
        On-disk location of the ChromaDB database.
    collection_prefix:
        Prefix of every collection name.
    client:
        Pre-built ChromaDB client (e.g. ``chromadb.EphemeralClient()`` in
        tests).  Overrides *persist_directory*.
    """

    def __init__(
        self,
        persist_directory: str = "./data/chromadb",
        collection_prefix: str = "ragcore",
        client: Any | None = None,
    ) -> None:
        self._persist_directory = persist_directory
        self._prefix = collection_prefix
        try:
            self._client = client or chromadb.PersistentClient(
                path=persist_directory,
                settings=chromadb.config.Settings(anonymized_telemetry=False),
            )
            self._records = self._open_collection(f"{collection_prefix}_chunks")
            self._vectors = {
                t: self._open_collection(f"{collection_prefix}_{t.value}") for t in ALL_EMBEDDING_TYPES
            }
        except Exception as exc:
            raise StoreUnavailableError(
                message=f"ChromaDB could not be opened at {persist_directory}: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    def _open_collection(self, name: str) -> Any:
        # Collections created without our embedding function reject it on
        # reopen; fall back to whatever was persisted.
        try:
            return self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
                embedding_function=_NoopEmbeddingFunction(),
            )
        except ValueError:
            return self._client.get_or_create_collection(name=name, metadata={"hnsw:space": "cosine"})

    async def _run(self, operation: str, fn: Callable[..., _T], *args: Any, **kwargs: Any) -> _T:
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except RagCoreError:
            raise
        except Exception as exc:
            raise StoreUnavailableError(
                message=f"ChromaDB {operation} failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

    # ------------------------------------------------------------------
    # IVectorStoreProvider implementation
    # ------------------------------------------------------------------

    async def upsert_chunks(self, chunks: list[Chunk]) -> int:
        if not chunks:
            return 0
        await self._run("upsert_chunks", self._upsert_sync, chunks)
        logger.info(
            "chromadb_upsert_chunks",
            count=len(chunks),
            batches=(len(chunks) + _UPSERT_BATCH - 1) // _UPSERT_BATCH,
        )
        return len(chunks)

    def _upsert_sync(self, chunks: list[Chunk]) -> None:
        for start in range(0, len(chunks), _UPSERT_BATCH):
            batch = chunks[start : start + _UPSERT_BATCH]
            ids = [c.chunk_id for c in batch]
            self._records.upsert(
                ids=ids,
                embeddings=[_PLACEHOLDER_EMBEDDING for _ in batch],
                documents=[c.content for c in batch],
                metadatas=[self._chunk_to_metadata(c) for c in batch],
            )
            for embedding_type, collection in self._vectors.items():
                # A re-upsert without a vector must not leave a stale one behind.
                stale = [c.chunk_id for c in batch if not c.has_embedding(embedding_type)]
                if stale:
                    collection.delete(ids=stale)
                embedded = [c for c in batch if c.has_embedding(embedding_type)]
                if embedded:
                    collection.upsert(
                        ids=[c.chunk_id for c in embedded],
                        embeddings=[c.embeddings[embedding_type] for c in embedded],
                        metadatas=[self._filter_metadata(c) for c in embedded],
                    )

    async def query(
        self,
        embedding_type: EmbeddingType,
        vector: list[float],
        top_k: int = 10,
        filters: ChunkFilter | None = None,
    ) -> list[ScoredChunk]:
        embedding_type = EmbeddingType(embedding_type)
        collection = self._vectors[embedding_type]
        count = await self._run("count", collection.count)
        if count == 0 or top_k <= 0:
            return []
        kwargs: dict[str, Any] = {
            "query_embeddings": [vector],
            "n_results": min(top_k, count),
            "include": ["distances"],
        }
        where = self._translate_filters(filters)
        if where:
            kwargs["where"] = where
        results = await self._run("query", collection.query, **kwargs)

        ids = results["ids"][0] if results.get("ids") else []
        distances = results["distances"][0] if results.get("distances") else [1.0] * len(ids)
        chunks = {c.chunk_id: c for c in await self.get_chunks(list(ids))}
        scored = [
            ScoredChunk(chunk=chunks[cid], score=max(0.0, min(1.0, 1.0 - float(distance))))
            for cid, distance in zip(ids, distances)
            if cid in chunks
        ]
        scored.sort(key=lambda s: (-s.score, s.chunk.chunk_id))
        logger.debug(
            "chromadb_query",
            embedding_type=embedding_type.value,
            results_count=len(scored),
            top_score=scored[0].score if scored else 0.0,
        )
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
        variants = sorted({v for t in terms for v in (t, t.capitalize(), t.upper())})
        contains = [{"$contains": v} for v in variants]
        kwargs: dict[str, Any] = {
            "where_document": contains[0] if len(contains) == 1 else {"$or": contains},
            "include": ["documents", "metadatas"],
        }
        where = self._translate_filters(filters)
        if where:
            kwargs["where"] = where
        page = await self._run("keyword_search", self._records.get, **kwargs)

        scored: list[ScoredChunk] = []
        for cid, doc, meta in zip(page["ids"] or [], page["documents"] or [], page["metadatas"] or []):
            score = keyword_score(terms, doc or "")
            if score > 0:
                scored.append(ScoredChunk(chunk=self._metadata_to_chunk(cid, doc or "", meta, {}), score=score))
        scored.sort(key=lambda s: (-s.score, s.chunk.chunk_id))
        top = scored[:top_k]
        # Attach embeddings only for the survivors.
        full = {c.chunk_id: c for c in await self.get_chunks([s.chunk.chunk_id for s in top])}
        return [ScoredChunk(chunk=full.get(s.chunk.chunk_id, s.chunk), score=s.score) for s in top]

    async def get_chunks(self, chunk_ids: list[str]) -> list[Chunk]:
        if not chunk_ids:
            return []
        page = await self._run(
            "get_chunks", self._records.get, ids=list(dict.fromkeys(chunk_ids)), include=["documents", "metadatas"]
        )
        found = await self._hydrate(page)
        by_id = {c.chunk_id: c for c in found}
        return [by_id[cid] for cid in chunk_ids if cid in by_id]

    async def get_source_chunks(self, source_id: str) -> list[Chunk]:
        page = await self._run(
            "get_source_chunks",
            self._records.get,
            where={"source_id": source_id},
            include=["documents", "metadatas"],
        )
        chunks = await self._hydrate(page)
        return sorted(chunks, key=lambda c: c.sequence_order)

    async def list_chunks(self) -> list[Chunk]:
        chunks: list[Chunk] = []
        offset = 0
        while True:
            page = await self._run(
                "list_chunks",
                self._records.get,
                include=["documents", "metadatas"],
                limit=_PAGE_SIZE,
                offset=offset,
            )
            batch = await self._hydrate(page)
            chunks.extend(batch)
            if len(page["ids"] or []) < _PAGE_SIZE:
                break
            offset += _PAGE_SIZE
        return sorted(chunks, key=lambda c: (c.source_id, c.sequence_order))

    async def delete_by_source(self, source_id: str) -> int:
        existing = await self._run("delete_by_source", self._records.get, where={"source_id": source_id})
        ids = existing["ids"] or []
        if ids:
            await self._run("delete_by_source", self._delete_ids_sync, list(ids))
        logger.info("chromadb_delete_by_source", source_id=source_id, deleted_count=len(ids))
        return len(ids)

    async def delete_chunks(self, chunk_ids: list[str]) -> int:
        if not chunk_ids:
            return 0
        existing = await self._run("delete_chunks", self._records.get, ids=list(dict.fromkeys(chunk_ids)))
        ids = existing["ids"] or []
        if ids:
            await self._run("delete_chunks", self._delete_ids_sync, list(ids))
        logger.debug("chromadb_delete_chunks", requested=len(chunk_ids), deleted_count=len(ids))
        return len(ids)

    def _delete_ids_sync(self, ids: list[str]) -> None:
        self._records.delete(ids=ids)
        for collection in self._vectors.values():
            collection.delete(ids=ids)

    async def get_source_ids(self) -> set[str]:
        source_ids: set[str] = set()
        offset = 0
        while True:
            page = await self._run(
                "get_source_ids", self._records.get, include=["metadatas"], limit=_PAGE_SIZE, offset=offset
            )
            metadatas = page["metadatas"] or []
            for meta in metadatas:
                sid = meta.get("source_id")
                if sid:
                    source_ids.add(sid)
            if len(metadatas) < _PAGE_SIZE:
                break
            offset += _PAGE_SIZE
        return source_ids

    def get_provider_name(self) -> str:
        return "chromadb"

    def is_available(self) -> bool:
        """Return ``True`` if the ChromaDB collections are accessible."""
        try:
            self._records.count()
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _hydrate(self, page: dict[str, Any]) -> list[Chunk]:
        """Rebuild chunks from a records page, attaching their stored vectors."""
        ids = list(page["ids"] or [])
        if not ids:
            return []
        documents = page.get("documents") or [""] * len(ids)
        metadatas = page.get("metadatas") or [{}] * len(ids)

        vectors: dict[str, dict[EmbeddingType, list[float]]] = {cid: {} for cid in ids}
        for embedding_type, collection in self._vectors.items():
            wanted = [
                cid
                for cid, meta in zip(ids, metadatas)
                if embedding_type.value in json.loads(meta.get("embedding_types", "[]"))
            ]
            if not wanted:
                continue
            got = await self._run("get_embeddings", collection.get, ids=wanted, include=["embeddings"])
            embeddings = got.get("embeddings")
            if embeddings is None:
                continue
            for cid, vector in zip(got["ids"], embeddings):
                vectors[cid][embedding_type] = [float(x) for x in vector]

        return [
            self._metadata_to_chunk(cid, doc or "", meta, vectors[cid])
            for cid, doc, meta in zip(ids, documents, metadatas)
        ]

    @staticmethod
    def _filter_metadata(chunk: Chunk) -> dict[str, str | int | float | bool]:
        """Fields the ``where`` clause of :meth:`_translate_filters` may reference."""
        return {
            "source_id": chunk.source_id,
            "scale_type": chunk.scale_type.value,
            "quality_score": float(chunk.quality_score),
            "ingested_ts": chunk.ingested_at.timestamp() if chunk.ingested_at else _NOT_INGESTED_TS,
        }

    @classmethod
    def _chunk_to_metadata(cls, chunk: Chunk) -> dict[str, str | int | float | bool]:
        meta = cls._filter_metadata(chunk)
        meta.update(
            {
                "version_id": chunk.version_id,
                "sequence_order": chunk.sequence_order,
                "hierarchy_level": chunk.hierarchy_level,
                "parent_chunk_id": chunk.parent_chunk_id or "",
                "child_chunk_ids": json.dumps(chunk.child_chunk_ids),
                "sibling_chunk_ids": json.dumps(chunk.sibling_chunk_ids),
                "hierarchy_path": json.dumps(chunk.hierarchy_path),
                "token_count": chunk.token_count,
                "coherence_score": float(chunk.coherence_score),
                "semantic_boundaries": json.dumps(
                    [b.model_dump(mode="json") for b in chunk.semantic_boundaries]
                ),
                "content_hash": chunk.content_hash,
                "ingested_at": chunk.ingested_at.isoformat() if chunk.ingested_at else "",
                "embedding_types": json.dumps(sorted(t.value for t in chunk.embeddings)),
            }
        )
        return meta

    @staticmethod
    def _metadata_to_chunk(
        chunk_id: str,
        content: str,
        meta: dict[str, Any],
        embeddings: dict[EmbeddingType, list[float]],
    ) -> Chunk:
        ingested = meta.get("ingested_at") or ""
        return Chunk(
            chunk_id=chunk_id,
            source_id=meta.get("source_id", ""),
            version_id=int(meta.get("version_id", 1)),
            sequence_order=int(meta.get("sequence_order", 0)),
            scale_type=ScaleType(meta.get("scale_type", ScaleType.PARAGRAPH.value)),
            hierarchy_level=int(meta.get("hierarchy_level", 0)),
            parent_chunk_id=meta.get("parent_chunk_id") or None,
            child_chunk_ids=json.loads(meta.get("child_chunk_ids", "[]")),
            sibling_chunk_ids=json.loads(meta.get("sibling_chunk_ids", "[]")),
            hierarchy_path=json.loads(meta.get("hierarchy_path", "[]")),
            content=content,
            token_count=int(meta.get("token_count", 0)),
            quality_score=float(meta.get("quality_score", 0.0)),
            coherence_score=float(meta.get("coherence_score", 0.0)),
            semantic_boundaries=[
                SemanticBoundary.model_validate(b) for b in json.loads(meta.get("semantic_boundaries", "[]"))
            ],
            embeddings=embeddings,
            content_hash=meta.get("content_hash", ""),
            ingested_at=datetime.fromisoformat(ingested) if ingested else None,
        )

    @staticmethod
    def _translate_filters(filters: ChunkFilter | None) -> dict[str, Any] | None:
        """Translate a :class:`ChunkFilter` into a ChromaDB ``where`` clause."""
        if filters is None or filters.is_empty():
            return None
        clauses: list[dict[str, Any]] = []
        if filters.source_ids is not None:
            clauses.append({"source_id": {"$in": list(filters.source_ids) or [""]}})
        if filters.min_quality is not None:
            clauses.append({"quality_score": {"$gte": filters.min_quality}})
        if filters.max_quality is not None:
            clauses.append({"quality_score": {"$lte": filters.max_quality}})
        if filters.ingested_after is not None:
            clauses.append({"ingested_ts": {"$gte": filters.ingested_after.timestamp()}})
        if filters.ingested_before is not None:
            clauses.append({"ingested_ts": {"$lte": filters.ingested_before.timestamp()}})
            clauses.append({"ingested_ts": {"$gte": 0.0}})
        if filters.scale_types is not None:
            clauses.append({"scale_type": {"$in": [s.value for s in filters.scale_types] or [""]}})
        if not clauses:
            return None
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}
