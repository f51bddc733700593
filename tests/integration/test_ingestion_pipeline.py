"""Integration tests for the ingestion pipeline and retrieval entry point.

Runs the real orchestrator (loader, chunker, generator, validator,
retriever, SQLite registry) against the sample documents, with the
deterministic hashing embedding provider and the in-memory vector store.
"""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import pytest

from ragcore.main import build_orchestrator
from ragcore.models.chunk import EmbeddingType
from ragcore.models.ingestion import Component, JobStatus
from ragcore.models.quality import ViolationKind
from ragcore.providers.cache.memory_cache_backend import MemoryCacheBackend
from ragcore.providers.loader.text_file_loader import TextFileLoader
from ragcore.providers.registry.sqlite_source_registry import SQLiteSourceRegistry
from ragcore.providers.vector_store.memory_vector_store import MemoryVectorStoreProvider
from ragcore.utils.errors import ProviderError, StoreUnavailableError

GUIDE = "guides/fund_setup.md"
NOTES = "notes/operations.txt"


class TestIngest:
    """Load -> chunk -> embed -> store -> validate for a single source."""

    @pytest.mark.asyncio
    async def test_ingest_completes(self, orchestrator, vector_store) -> None:
        async with orchestrator:
            result = await orchestrator.ingest(GUIDE)

            assert result.status is JobStatus.COMPLETED
            assert result.version == 1
            assert result.chunks_created > 0
            assert result.embedding_failures == []
            assert result.embeddings_generated == result.chunks_created * len(EmbeddingType)
            assert result.quality_report is not None
            assert result.quality_report.violations_of(ViolationKind.MISSING_EMBEDDING) == []

            stored = await vector_store.get_source_chunks(GUIDE)
            assert len(stored) == result.chunks_created
            assert all(len(c.embeddings) == len(EmbeddingType) for c in stored)
            assert all(c.ingested_at is not None for c in stored)
            assert [c.sequence_order for c in stored] == list(range(len(stored)))

    @pytest.mark.asyncio
    async def test_unchanged_source_is_skipped_until_forced(self, orchestrator, embedding_provider) -> None:
        async with orchestrator:
            first = await orchestrator.ingest(GUIDE)
            calls = len(embedding_provider.calls)

            second = await orchestrator.ingest(GUIDE)
            assert second.status is JobStatus.SKIPPED
            assert second.version == 1
            assert len(embedding_provider.calls) == calls

            forced = await orchestrator.ingest(GUIDE, force=True)
            assert forced.status is JobStatus.COMPLETED
            assert forced.version == 2
            assert forced.chunks_created == first.chunks_created
            # Every vector comes from the cache on an identical re-run.
            assert len(embedding_provider.calls) == calls

    @pytest.mark.asyncio
    async def test_changed_document_replaces_chunks(self, orchestrator, documents_dir, vector_store) -> None:
        async with orchestrator:
            await orchestrator.ingest(NOTES)
            before = {c.chunk_id for c in await vector_store.get_source_chunks(NOTES)}

            (documents_dir / NOTES).write_text(
                "Cash forecasting now runs twice a day, before and after the noon cutoff.\n",
                encoding="utf-8",
            )
            result = await orchestrator.ingest(NOTES)

            after = await vector_store.get_source_chunks(NOTES)
            assert result.status is JobStatus.COMPLETED
            assert result.version == 2
            assert {c.chunk_id for c in after}.isdisjoint(before)
            assert all(c.version_id == 2 for c in after)

    @pytest.mark.asyncio
    async def test_transient_provider_error_is_retried(self, orchestrator, embedding_provider, failing_error) -> None:
        embedding_provider.errors.append(failing_error)
        async with orchestrator:
            result = await orchestrator.ingest(NOTES)

        assert result.status is JobStatus.COMPLETED
        assert result.embedding_failures == []

    @pytest.mark.asyncio
    async def test_empty_document(self, orchestrator, documents_dir) -> None:
        (documents_dir / "empty.md").write_text("   \n", encoding="utf-8")
        async with orchestrator:
            result = await orchestrator.ingest("empty.md")

        assert result.status is JobStatus.COMPLETED
        assert result.chunks_created == 0


class TestFailures:
    @pytest.mark.asyncio
    async def test_unknown_source_fails_in_loader(self, orchestrator) -> None:
        async with orchestrator:
            result = await orchestrator.ingest("guides/missing.md")

        assert result.status is JobStatus.FAILED
        assert result.failed_component is Component.LOADER
        assert [c.error_type for c in result.causes] == ["IngestionError", "ValidationError"]
        assert result.retryable is False

    @pytest.mark.asyncio
    async def test_all_embeddings_absent_fails_in_embedder(self, orchestrator, embedding_provider, vector_store) -> None:
        # An empty marker matches every text.
        embedding_provider.poison.add("")
        async with orchestrator:
            result = await orchestrator.ingest(NOTES)
            stats = await orchestrator.get_stats()

        assert result.status is JobStatus.FAILED
        assert result.failed_component is Component.EMBEDDER
        assert [c.error_type for c in result.causes] == ["IngestionError", "EmbeddingIncompleteError"]
        assert result.retryable is True
        assert result.embedding_failures
        assert all(f.error_type == "InvalidVector" for f in result.embedding_failures)
        assert await vector_store.get_source_chunks(NOTES) == []
        assert stats["sources_by_status"] == {"failed": 1}

    @pytest.mark.asyncio
    async def test_failed_reingest_keeps_previous_version(
        self, orchestrator, embedding_provider, vector_store, documents_dir
    ) -> None:
        async with orchestrator:
            await orchestrator.ingest(NOTES)
            committed = await vector_store.get_source_chunks(NOTES)

            (documents_dir / NOTES).write_text(
                "Settlement instructions are confirmed with the broker on trade date.\n\n"
                "Failed settlements are chased by the middle office until resolved.\n",
                encoding="utf-8",
            )
            embedding_provider.errors.append(ProviderError("invalid api key", retryable=False))
            result = await orchestrator.ingest(NOTES)

            assert result.status is JobStatus.FAILED
            assert result.failed_component is Component.EMBEDDER
            assert all(f.error_type == "ProviderError" for f in result.embedding_failures)
            assert await vector_store.get_source_chunks(NOTES) == committed

    @pytest.mark.asyncio
    async def test_failed_store_write_keeps_previous_version(self, orchestrator, vector_store) -> None:
        async with orchestrator:
            await orchestrator.ingest(NOTES)
            committed = await vector_store.get_source_chunks(NOTES)

            with patch.object(
                vector_store, "upsert_chunks", side_effect=StoreUnavailableError(message="write refused")
            ):
                result = await orchestrator.ingest(NOTES, force=True)

            assert result.status is JobStatus.FAILED
            assert result.failed_component is Component.STORE
            assert result.retryable is True
            assert await vector_store.get_source_chunks(NOTES) == committed

    @pytest.mark.asyncio
    async def test_quality_gate(
        self, tmp_path: Path, documents_dir, test_config, embedding_provider
    ) -> None:
        config = dict(test_config, validation={"quality_gate_min_score": 100.5})
        orchestrator = build_orchestrator(
            config=config,
            embedding_provider=embedding_provider,
            vector_store=MemoryVectorStoreProvider(),
            cache_backend=MemoryCacheBackend(),
            registry=SQLiteSourceRegistry(db_path=tmp_path / "gate.db"),
            loader=TextFileLoader(documents_dir),
        )
        async with orchestrator:
            result = await orchestrator.ingest(GUIDE)

        assert result.status is JobStatus.FAILED
        assert result.failed_component is Component.VALIDATOR
        assert result.causes[1].error_type == "QualityGateError"
        assert result.quality_report is not None


class TestPartialAndRepair:
    @pytest.mark.asyncio
    async def test_partial_then_repair(self, orchestrator, embedding_provider) -> None:
        embedding_provider.poison.add("auditor")
        async with orchestrator:
            partial = await orchestrator.ingest(GUIDE)

            assert partial.status is JobStatus.PARTIAL
            assert partial.retryable is True
            assert partial.embeddings_generated > 0
            assert partial.embedding_failures
            assert all(f.reason.startswith("invalid vector") for f in partial.embedding_failures)
            assert (await orchestrator.get_stats())["sources_by_status"] == {"pending": 1}

            embedding_provider.poison.clear()
            repaired = await orchestrator.repair_embeddings(GUIDE)

            assert repaired.status is JobStatus.COMPLETED
            assert repaired.embedding_failures == []
            assert repaired.version == 1
            report = await orchestrator.validate(GUIDE)
            assert report.violations_of(ViolationKind.MISSING_EMBEDDING) == []
            assert (await orchestrator.get_stats())["sources_by_status"] == {"completed": 1}

            again = await orchestrator.repair_embeddings(GUIDE)
            assert again.status is JobStatus.SKIPPED

    @pytest.mark.asyncio
    async def test_partial_source_is_reingested_without_force(self, orchestrator, embedding_provider) -> None:
        embedding_provider.poison.add("auditor")
        async with orchestrator:
            await orchestrator.ingest(GUIDE)
            embedding_provider.poison.clear()
            result = await orchestrator.ingest(GUIDE)

        assert result.status is JobStatus.COMPLETED
        assert result.version == 2


class TestBatchJobsAndRetrieval:
    @pytest.mark.asyncio
    async def test_batch_preserves_order_and_dedupes(self, orchestrator) -> None:
        async with orchestrator:
            results = await orchestrator.ingest_batch([NOTES, GUIDE, NOTES])

        assert [r.source_id for r in results] == [NOTES, GUIDE]
        assert all(r.status is JobStatus.COMPLETED for r in results)

    @pytest.mark.asyncio
    async def test_jobs_are_persisted(self, orchestrator) -> None:
        async with orchestrator:
            ok = await orchestrator.ingest(GUIDE)
            failed = await orchestrator.ingest("missing.md")

            job = await orchestrator.get_job(ok.job_id)
            assert job.status is JobStatus.COMPLETED
            assert job.result.chunks_created == ok.chunks_created
            assert job.finished_at is not None

            failed_jobs = await orchestrator.list_jobs(status=JobStatus.FAILED)
            assert [j.job_id for j in failed_jobs] == [failed.job_id]
            assert failed_jobs[0].result.failed_component is Component.LOADER
            assert len(await orchestrator.list_jobs()) == 2
            assert orchestrator.tracker.active_jobs() == []

    @pytest.mark.asyncio
    async def test_retrieve_context(self, orchestrator) -> None:
        async with orchestrator:
            await orchestrator.ingest_batch(await orchestrator.list_available_sources())
            result = await orchestrator.retrieve_context("fund rollforward settings")

        assert result.items
        top = max(result.items, key=lambda item: item.relevance_score)
        assert top.chunk.source_id == GUIDE
        assert "rollforward" in top.chunk.content.lower()
        assert len({item.chunk.chunk_id for item in result.items}) == len(result.items)

    @pytest.mark.asyncio
    async def test_delete_source(self, orchestrator, vector_store) -> None:
        async with orchestrator:
            ingested = await orchestrator.ingest(NOTES)
            deleted = await orchestrator.delete_source(NOTES)
            stats = await orchestrator.get_stats()

            assert deleted == ingested.chunks_created
            assert await vector_store.get_source_ids() == set()
            assert stats["registered_sources"] == 0
            assert await orchestrator.delete_source(NOTES) == 0

    @pytest.mark.asyncio
    async def test_stats(self, orchestrator) -> None:
        async with orchestrator:
            await orchestrator.ingest(GUIDE)
            await orchestrator.ingest(GUIDE)
            stats = await orchestrator.get_stats()

        assert stats["registered_sources"] == 1
        assert stats["stored_sources"] == 1
        assert stats["jobs_by_status"] == {"completed": 1, "skipped": 1}
        assert stats["active_jobs"] == 0
        assert stats["max_workers"] == 2
        assert stats["vector_store"] == "memory"
        assert stats["embedding_provider"] == "hashing"
        assert stats["stored_chunks"] > 0
