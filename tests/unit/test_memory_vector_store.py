"""Unit tests for the in-process MemoryVectorStoreProvider."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
import pytest_asyncio

from ragcore.models.chunk import Chunk, EmbeddingType, ScaleType
from ragcore.models.retrieval import ChunkFilter
from ragcore.providers.vector_store.memory_vector_store import MemoryVectorStoreProvider
from ragcore.utils.text import sha256_hex


def _chunk(
    chunk_id: str,
    vector: list[float] | None,
    source_id: str = "guide",
    sequence_order: int = 0,
    content: str = "Management fee accruals run daily.",
    quality: float = 0.5,
    scale_type: ScaleType = ScaleType.PARAGRAPH,
    ingested_at: datetime | None = None,
) -> Chunk:
    return Chunk(
        chunk_id=chunk_id,
        source_id=source_id,
        sequence_order=sequence_order,
        scale_type=scale_type,
        content=content,
        token_count=len(content.split()),
        quality_score=quality,
        content_hash=sha256_hex(content),
        embeddings={EmbeddingType.CONTENT: vector} if vector is not None else {},
        ingested_at=ingested_at,
    )


@pytest_asyncio.fixture
async def store() -> MemoryVectorStoreProvider:
    s = MemoryVectorStoreProvider()
    await s.upsert_chunks(
        [
            _chunk("a", [1.0, 0.0], sequence_order=1, content="Custody reconciliation against the custodian."),
            _chunk("b", [0.6, 0.8], sequence_order=0, content="Fee accruals accrue fee income daily.", quality=0.9),
            _chunk("c", [0.0, 1.0], source_id="ops", content="Fee schedule overview.", scale_type=ScaleType.SECTION),
            _chunk("d", None, source_id="ops", sequence_order=1, content="Unembedded fee note."),
        ]
    )
    return s


class TestMemoryVectorStore:
    @pytest.mark.asyncio
    async def test_query_ranks_by_cosine(self, store) -> None:
        results = await store.query(EmbeddingType.CONTENT, [1.0, 0.0], top_k=3)

        assert [r.chunk.chunk_id for r in results] == ["a", "b", "c"]
        assert results[0].score == pytest.approx(1.0)
        assert results[1].score == pytest.approx(0.6)
        assert results[2].score == 0.0

    @pytest.mark.asyncio
    async def test_query_skips_chunks_without_that_vector(self, store) -> None:
        results = await store.query(EmbeddingType.CONTENT, [0.0, 1.0], top_k=10)
        assert "d" not in {r.chunk.chunk_id for r in results}
        assert await store.query(EmbeddingType.SEMANTIC, [0.0, 1.0]) == []

    @pytest.mark.asyncio
    async def test_zero_query_vector_scores_zero(self, store) -> None:
        results = await store.query(EmbeddingType.CONTENT, [0.0, 0.0])
        assert all(r.score == 0.0 for r in results)

    @pytest.mark.asyncio
    async def test_query_filters(self, store) -> None:
        by_source = await store.query(EmbeddingType.CONTENT, [1.0, 0.0], filters=ChunkFilter(source_ids=["ops"]))
        assert [r.chunk.chunk_id for r in by_source] == ["c"]

        by_quality = await store.query(EmbeddingType.CONTENT, [1.0, 0.0], filters=ChunkFilter(min_quality=0.8))
        assert [r.chunk.chunk_id for r in by_quality] == ["b"]

        by_scale = await store.query(
            EmbeddingType.CONTENT, [1.0, 0.0], filters=ChunkFilter(scale_types=[ScaleType.SECTION])
        )
        assert [r.chunk.chunk_id for r in by_scale] == ["c"]

    @pytest.mark.asyncio
    async def test_ingested_after_excludes_undated(self) -> None:
        s = MemoryVectorStoreProvider()
        stamp = datetime(2026, 3, 1, tzinfo=timezone.utc)
        await s.upsert_chunks([_chunk("new", [1.0, 0.0], ingested_at=stamp), _chunk("old", [1.0, 0.0])])

        results = await s.query(
            EmbeddingType.CONTENT,
            [1.0, 0.0],
            filters=ChunkFilter(ingested_after=datetime(2026, 1, 1, tzinfo=timezone.utc)),
        )
        assert [r.chunk.chunk_id for r in results] == ["new"]

    @pytest.mark.asyncio
    async def test_keyword_search(self, store) -> None:
        results = await store.keyword_search(["fee"], top_k=10)

        assert [r.chunk.chunk_id for r in results] == ["b", "c", "d"]
        assert results[0].score == pytest.approx(0.875)
        assert results[1].score == pytest.approx(0.75)
        assert await store.keyword_search(["  "]) == []

    @pytest.mark.asyncio
    async def test_get_chunks_keeps_requested_order(self, store) -> None:
        chunks = await store.get_chunks(["c", "missing", "a"])
        assert [c.chunk_id for c in chunks] == ["c", "a"]

    @pytest.mark.asyncio
    async def test_source_listing_and_delete(self, store) -> None:
        assert [c.chunk_id for c in await store.get_source_chunks("guide")] == ["b", "a"]
        assert [c.chunk_id for c in await store.list_chunks()] == ["b", "a", "c", "d"]
        assert await store.get_source_ids() == {"guide", "ops"}

        assert await store.delete_by_source("ops") == 2
        assert await store.delete_by_source("ops") == 0
        assert await store.get_source_ids() == {"guide"}

    @pytest.mark.asyncio
    async def test_delete_chunks_by_id(self, store) -> None:
        assert await store.delete_chunks(["a", "d", "unknown", "a"]) == 2
        assert [c.chunk_id for c in await store.list_chunks()] == ["b", "c"]
        assert await store.delete_chunks([]) == 0

    @pytest.mark.asyncio
    async def test_upsert_replaces(self, store) -> None:
        await store.upsert_chunks([_chunk("a", [0.0, 1.0], content="Replaced content.")])
        (chunk,) = await store.get_chunks(["a"])
        assert chunk.content == "Replaced content."
        assert len(await store.list_chunks()) == 4

    def test_identity(self) -> None:
        s = MemoryVectorStoreProvider()
        assert s.get_provider_name() == "memory"
        assert s.is_available() is True
