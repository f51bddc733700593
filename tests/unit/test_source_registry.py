"""Unit tests for SQLiteSourceRegistry.

Tests source CRUD, job persistence and filtering against a temporary
SQLite database.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from ragcore.models.ingestion import (
    Component,
    FailureCause,
    IngestionJob,
    IngestionResult,
    JobStatus,
    ProcessingStatus,
    SourceDocument,
)
from ragcore.providers.registry.sqlite_source_registry import SQLiteSourceRegistry
from ragcore.utils.errors import RegistryError


@pytest_asyncio.fixture
async def registry(tmp_path):
    """Create a SQLiteSourceRegistry with a temporary database."""
    r = SQLiteSourceRegistry(db_path=tmp_path / "data" / "registry.db")
    await r.initialize()
    yield r
    await r.close()


def _make_job(
    job_id: str,
    source_id: str = "guides/fund_setup.md",
    status: JobStatus = JobStatus.COMPLETED,
    minutes_ago: int = 0,
) -> IngestionJob:
    started = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc) - timedelta(minutes=minutes_ago)
    return IngestionJob(job_id=job_id, source_id=source_id, status=status, started_at=started)


# ─── Initialization ───────────────────────────────────────────────


@pytest.mark.asyncio
async def test_double_initialize_is_idempotent(registry):
    await registry.initialize()
    assert registry.get_provider_name() == "sqlite_registry"


@pytest.mark.asyncio
async def test_use_before_initialize_raises(tmp_path):
    r = SQLiteSourceRegistry(db_path=tmp_path / "registry.db")
    with pytest.raises(RegistryError):
        await r.get_source("anything")


# ─── Sources ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_save_and_get_source(registry):
    source = SourceDocument(
        source_id="guides/fund_setup.md",
        hash="abc123",
        version=2,
        processing_status=ProcessingStatus.COMPLETED,
        filename="fund_setup.md",
        config_fingerprint="fp-1",
        chunk_count=7,
    )
    await registry.save_source(source)

    loaded = await registry.get_source("guides/fund_setup.md")
    assert loaded == source


@pytest.mark.asyncio
async def test_get_unknown_source(registry):
    assert await registry.get_source("nope.md") is None


@pytest.mark.asyncio
async def test_save_source_overwrites(registry):
    await registry.save_source(SourceDocument(source_id="a.md", version=1))
    await registry.save_source(SourceDocument(source_id="a.md", version=2, processing_status=ProcessingStatus.FAILED))

    loaded = await registry.get_source("a.md")
    assert loaded.version == 2
    assert loaded.processing_status is ProcessingStatus.FAILED
    assert len(await registry.list_sources()) == 1


@pytest.mark.asyncio
async def test_list_sources_ordered(registry):
    for source_id in ("c.md", "a.md", "b.md"):
        await registry.save_source(SourceDocument(source_id=source_id))
    assert [s.source_id for s in await registry.list_sources()] == ["a.md", "b.md", "c.md"]


@pytest.mark.asyncio
async def test_delete_source(registry):
    await registry.save_source(SourceDocument(source_id="a.md"))
    assert await registry.delete_source("a.md") is True
    assert await registry.delete_source("a.md") is False
    assert await registry.get_source("a.md") is None


# ─── Jobs ─────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_job_round_trip_keeps_result(registry):
    result = IngestionResult(
        job_id="j1",
        source_id="guides/fund_setup.md",
        status=JobStatus.FAILED,
        causes=[
            FailureCause(component=Component.EMBEDDER, error_type="IngestionError", message="embedding failed"),
            FailureCause(
                component=Component.EMBEDDER,
                error_type="EmbeddingIncompleteError",
                message="4 embedding(s) absent",
                retryable=True,
            ),
        ],
        retryable=True,
    )
    job = _make_job("j1", status=JobStatus.FAILED).model_copy(update={"result": result})
    await registry.save_job(job)

    loaded = await registry.get_job("j1")
    assert loaded == job
    assert loaded.result.failed_component is Component.EMBEDDER


@pytest.mark.asyncio
async def test_get_unknown_job(registry):
    assert await registry.get_job("missing") is None


@pytest.mark.asyncio
async def test_save_job_updates_status(registry):
    await registry.save_job(_make_job("j1", status=JobStatus.PROCESSING))
    await registry.save_job(_make_job("j1", status=JobStatus.COMPLETED))

    assert (await registry.get_job("j1")).status is JobStatus.COMPLETED
    assert len(await registry.list_jobs()) == 1


@pytest.mark.asyncio
async def test_list_jobs_newest_first_and_filtered(registry):
    await registry.save_job(_make_job("old", minutes_ago=30))
    await registry.save_job(_make_job("new", minutes_ago=1))
    await registry.save_job(_make_job("failed", status=JobStatus.FAILED, minutes_ago=10))
    await registry.save_job(_make_job("other", source_id="notes/operations.txt", minutes_ago=5))

    assert [j.job_id for j in await registry.list_jobs()] == ["new", "other", "failed", "old"]
    assert [j.job_id for j in await registry.list_jobs(status=JobStatus.FAILED)] == ["failed"]
    assert [j.job_id for j in await registry.list_jobs(source_id="notes/operations.txt")] == ["other"]
    assert [j.job_id for j in await registry.list_jobs(limit=2)] == ["new", "other"]
