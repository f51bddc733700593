"""Ingestion orchestrator: load -> chunk -> embed -> store -> validate.

The :class:`IngestionOrchestrator` coordinates the loader, chunker,
embedding generator, vector store, quality validator and source registry
without any of them knowing about each other.  It is also the only entry
point the chat-serving layer uses for retrieval (:meth:`retrieve_context`).

ARCHITECTURE NOTE:
    Every stage runs inside ``_component(...)``, which turns any exception
    into an :class:`IngestionError` naming that stage and chains the
    original via ``__cause__``.  ``ingest`` never raises for a pipeline
    failure; it returns a ``failed`` :class:`IngestionResult` whose
    ``causes`` list is that chain, outermost first.

    Job status rules:

        every embedding present              -> completed
        some embeddings absent               -> partial (retryable; see
                                                repair_embeddings)
        no embeddings / embedder or store
          exception / quality gate           -> failed

    A new chunk set is upserted before anything is deleted; only then are
    the previous version's chunk IDs that the new set does not reuse
    removed.  A failed re-ingestion therefore leaves the last committed
    version searchable.

    Unchanged sources (same content hash and same config fingerprint,
    last run completed) are skipped unless ``force=True``.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
import time
from collections import Counter
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog

from ragcore.interfaces.document_loader import IDocumentLoader
from ragcore.interfaces.source_registry import ISourceRegistry
from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
from ragcore.models.chunk import Chunk
from ragcore.models.embedding import EmbeddingFailure
from ragcore.models.ingestion import (
    Component,
    FailureCause,
    IngestionJob,
    IngestionPhase,
    IngestionResult,
    JobStatus,
    ProcessingStatus,
    SourceDocument,
)
from ragcore.models.quality import ValidationReport
from ragcore.models.retrieval import RetrievalConfig, RetrievalResult
from ragcore.pipeline.job_tracker import JobTracker
from ragcore.services.chunking.hierarchical_chunker import HierarchicalSemanticChunker
from ragcore.services.embedding.multi_scale_generator import MultiScaleEmbeddingGenerator
from ragcore.services.retrieval.contextual_retriever import AdvancedContextualRetriever
from ragcore.services.validation.quality_validator import QualityValidator
from ragcore.utils.concurrency import throttled_gather, with_timeout
from ragcore.utils.errors import (
    IngestionError,
    QualityGateError,
    RagCoreError,
    RegistryError,
    StoreUnavailableError,
)
from ragcore.utils.logging import get_logger, job_context
from ragcore.utils.text import sha256_hex


@dataclass
class _RunState:
    """Mutable bookkeeping for one ingestion run, read when it fails."""

    version: int = 0
    chunks_created: int = 0
    embeddings_generated: int = 0
    failures: list[EmbeddingFailure] = field(default_factory=list)
    report: ValidationReport | None = None


def _is_retryable(exc: BaseException) -> bool:
    retryable = getattr(exc, "retryable", None)
    if isinstance(retryable, bool):
        return retryable
    return isinstance(exc, (StoreUnavailableError, RegistryError, asyncio.TimeoutError, OSError))


def cause_chain(exc: BaseException) -> list[FailureCause]:
    """Flatten *exc* and its ``__cause__`` links into :class:`FailureCause` records."""
    component = Component(exc.component) if isinstance(exc, IngestionError) else Component.REGISTRY
    causes: list[FailureCause] = []
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        causes.append(
            FailureCause(
                component=component,
                error_type=type(current).__name__,
                message=str(current),
                retryable=_is_retryable(current),
            )
        )
        current = current.__cause__
    return causes


class IngestionOrchestrator:
    """Runs ingestion jobs and serves retrieval for the RAG core.

    All collaborators are injected; :func:`ragcore.main.build_orchestrator`
    wires the production set from configuration.

    Parameters
    ----------
    loader, chunker, generator, store, registry, validator, retriever:
        Pipeline components.
    tracker:
        Job progress broadcaster.  A private one is created when omitted.
    max_workers:
        Concurrent sources in :meth:`ingest_batch`; defaults to ``os.cpu_count()``.
    quality_gate_min_score:
        Hard gate on the 0-100 validation score.  ``None`` disables it.
    store_timeout_seconds:
        Deadline for every vector store call made during ingestion.
    """

    def __init__(
        self,
        loader: IDocumentLoader,
        chunker: HierarchicalSemanticChunker,
        generator: MultiScaleEmbeddingGenerator,
        store: IVectorStoreProvider,
        registry: ISourceRegistry,
        validator: QualityValidator,
        retriever: AdvancedContextualRetriever,
        tracker: JobTracker | None = None,
        max_workers: int | None = None,
        quality_gate_min_score: float | None = None,
        store_timeout_seconds: float | None = 60.0,
    ) -> None:
        self._loader = loader
        self._chunker = chunker
        self._generator = generator
        self._store = store
        self._registry = registry
        self._validator = validator
        self._retriever = retriever
        self._tracker = tracker or JobTracker()
        self._max_workers = max(1, max_workers or os.cpu_count() or 1)
        self._quality_gate = quality_gate_min_score
        self._store_timeout = store_timeout_seconds
        self._status_counts: Counter[str] = Counter()
        self._logger: structlog.BoundLogger = get_logger(__name__)

    @property
    def tracker(self) -> JobTracker:
        return self._tracker

    @property
    def max_workers(self) -> int:
        return self._max_workers

    @property
    def retrieval_config(self) -> RetrievalConfig:
        return self._retriever.config

    async def list_available_sources(self) -> list[str]:
        """Source IDs the loader can supply, ingested or not."""
        return await self._loader.list_sources()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        await self._generator.cache.open()
        await self._registry.initialize()
        self._logger.info(
            "orchestrator_opened",
            store=self._store.get_provider_name(),
            embedding_provider=self._generator.provider.get_provider_name(),
            max_workers=self._max_workers,
        )

    async def close(self) -> None:
        await self._generator.cache.close()
        await self._registry.close()
        self._logger.info("orchestrator_closed")

    async def __aenter__(self) -> IngestionOrchestrator:
        await self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def config_fingerprint(self) -> str:
        """Hash of every setting that changes what ingestion produces."""
        provider = self._generator.provider
        payload = {
            "chunking": self._chunker.config.model_dump(mode="json"),
            "embedding_types": sorted(t.value for t in self._generator.config.embedding_types),
            "model": provider.get_model_name(),
            "dimension": provider.get_dimension(),
        }
        return sha256_hex(json.dumps(payload, sort_keys=True))

    async def ingest(self, source_id: str, force: bool = False) -> IngestionResult:
        """Ingest one source and return its job result.

        Pipeline failures are reported through the result (``failed`` with
        a cause chain), never raised.
        """
        started = time.perf_counter()
        job = await self._tracker.start(source_id)
        state = _RunState()
        self._logger.info("ingestion_started", source_id=source_id, job_id=job.job_id, force=force)

        try:
            with job_context(job.job_id, source_id):
                result = await self._run(job, source_id, force, state, started)
        except IngestionError as exc:
            result = IngestionResult(
                job_id=job.job_id,
                source_id=source_id,
                status=JobStatus.FAILED,
                version=state.version,
                chunks_created=state.chunks_created,
                embeddings_generated=state.embeddings_generated,
                embedding_failures=state.failures,
                quality_report=state.report,
                causes=cause_chain(exc),
                retryable=exc.retryable,
                elapsed_seconds=time.perf_counter() - started,
            )
            self._logger.error(
                "ingestion_failed",
                source_id=source_id,
                job_id=job.job_id,
                component=exc.component,
                retryable=exc.retryable,
                error=str(exc.__cause__ or exc),
            )
            await self._mark_source_failed(source_id, state.version)

        await self._finish(job, result)
        return result

    async def ingest_batch(self, source_ids: list[str], force: bool = False) -> list[IngestionResult]:
        """Ingest many sources on a bounded worker pool, preserving input order."""
        unique = list(dict.fromkeys(source_ids))
        semaphore = asyncio.Semaphore(self._max_workers)
        results = await throttled_gather(
            [self.ingest(source_id, force=force) for source_id in unique],
            semaphore,
            return_exceptions=False,
        )
        summary = Counter(r.status.value for r in results)
        self._logger.info("ingestion_batch_complete", sources=len(unique), statuses=dict(summary))
        return results

    async def _run(
        self,
        job: IngestionJob,
        source_id: str,
        force: bool,
        state: _RunState,
        started: float,
    ) -> IngestionResult:
        with self._component(Component.REGISTRY):
            await self._registry.save_job(job)

        job = await self._tracker.update(job.job_id, IngestionPhase.LOADING, 5.0, "loading document")
        with self._component(Component.LOADER):
            document = await self._loader.load(source_id)

        content_hash = sha256_hex(document.text)
        fingerprint = self.config_fingerprint()
        with self._component(Component.REGISTRY):
            existing = await self._registry.get_source(source_id)

        if (
            not force
            and existing is not None
            and existing.hash == content_hash
            and existing.config_fingerprint == fingerprint
            and existing.processing_status is ProcessingStatus.COMPLETED
        ):
            self._logger.info("ingestion_skipped_unchanged", source_id=source_id, version=existing.version)
            return IngestionResult(
                job_id=job.job_id,
                source_id=source_id,
                status=JobStatus.SKIPPED,
                version=existing.version,
                elapsed_seconds=time.perf_counter() - started,
            )

        state.version = existing.version + 1 if existing is not None else 1
        source = SourceDocument(
            source_id=source_id,
            hash=content_hash,
            version=state.version,
            processing_status=ProcessingStatus.PROCESSING,
            filename=document.metadata.filename,
            total_pages=document.metadata.total_pages,
            config_fingerprint=fingerprint,
        )
        with self._component(Component.REGISTRY):
            await self._registry.save_source(source)

        # -- Chunk (CPU-bound, off the event loop) --
        await self._tracker.update(job.job_id, IngestionPhase.CHUNKING, 15.0, "chunking")
        with self._component(Component.CHUNKER):
            forest = await asyncio.to_thread(
                self._chunker.chunk,
                source_id,
                document.text,
                document.metadata,
                None,
                state.version,
            )
        state.chunks_created = len(forest)

        if len(forest) == 0:
            with self._component(Component.STORE):
                await self._store_call(self._store.delete_by_source(source_id))
            with self._component(Component.REGISTRY):
                await self._registry.save_source(
                    source.model_copy(
                        update={
                            "processing_status": ProcessingStatus.COMPLETED,
                            "chunk_count": 0,
                            "updated_at": datetime.now(tz=timezone.utc),
                        }
                    )
                )
            self._logger.warning("ingestion_empty_document", source_id=source_id)
            return IngestionResult(
                job_id=job.job_id,
                source_id=source_id,
                status=JobStatus.COMPLETED,
                version=state.version,
                elapsed_seconds=time.perf_counter() - started,
            )

        # -- Embed --
        await self._tracker.update(
            job.job_id, IngestionPhase.EMBEDDING, 35.0, f"embedding {len(forest)} chunks"
        )
        with self._component(Component.EMBEDDER):
            batch = await self._generator.embed(forest.chunks)
        state.embeddings_generated = batch.embeddings_generated
        state.failures = list(batch.failures)
        if batch.embeddings_generated == 0 and batch.failures:
            with self._component(Component.EMBEDDER):
                batch.raise_for_failures()

        # -- Store --
        await self._tracker.update(job.job_id, IngestionPhase.STORING, 75.0, "storing chunks")
        ingested_at = datetime.now(tz=timezone.utc)
        chunks = [c.model_copy(update={"ingested_at": ingested_at}) for c in batch.chunks]
        with self._component(Component.STORE):
            previous = await self._store_call(self._store.get_source_chunks(source_id))
            await self._store_call(self._store.upsert_chunks(chunks))
            # Upsert first: a failed write leaves the committed set in place.
            current = {c.chunk_id for c in chunks}
            stale = [c.chunk_id for c in previous if c.chunk_id not in current]
            deleted = await self._store_call(self._store.delete_chunks(stale)) if stale else 0
        self._logger.debug("ingestion_chunks_replaced", source_id=source_id, deleted=deleted, stored=len(chunks))

        # -- Validate --
        await self._tracker.update(job.job_id, IngestionPhase.VALIDATING, 90.0, "validating")
        with self._component(Component.VALIDATOR):
            state.report = self._validator.validate_chunks(chunks, scope=source_id)
            if self._quality_gate is not None and state.report.overall_score < self._quality_gate:
                raise QualityGateError(
                    message=(
                        f"Quality score {state.report.overall_score:.1f} is below the "
                        f"gate of {self._quality_gate:.1f}"
                    ),
                    score=state.report.overall_score,
                )

        status = JobStatus.PARTIAL if batch.failures else JobStatus.COMPLETED
        with self._component(Component.REGISTRY):
            await self._registry.save_source(
                source.model_copy(
                    update={
                        # Partial sources stay pending so the next run re-ingests or repairs them.
                        "processing_status": (
                            ProcessingStatus.COMPLETED
                            if status is JobStatus.COMPLETED
                            else ProcessingStatus.PENDING
                        ),
                        "chunk_count": len(chunks),
                        "updated_at": datetime.now(tz=timezone.utc),
                    }
                )
            )

        return IngestionResult(
            job_id=job.job_id,
            source_id=source_id,
            status=status,
            version=state.version,
            chunks_created=state.chunks_created,
            embeddings_generated=state.embeddings_generated,
            embedding_failures=state.failures,
            quality_report=state.report,
            retryable=status is JobStatus.PARTIAL,
            elapsed_seconds=time.perf_counter() - started,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def repair_embeddings(self, source_id: str) -> IngestionResult:
        """Re-embed the chunks of *source_id* whose expected embeddings are absent.

        Existing vectors are kept even if their re-generation fails.  Returns
        ``skipped`` when nothing is missing.
        """
        started = time.perf_counter()
        job = await self._tracker.start(source_id)
        expected = list(self._generator.config.embedding_types)
        state = _RunState()

        try:
            with self._component(Component.STORE):
                chunks = await self._store_call(self._store.get_source_chunks(source_id))
            with self._component(Component.REGISTRY):
                source = await self._registry.get_source(source_id)
            state.version = source.version if source is not None else 0

            broken = [c for c in chunks if c.missing_embeddings(expected)]
            if not broken:
                result = IngestionResult(
                    job_id=job.job_id,
                    source_id=source_id,
                    status=JobStatus.SKIPPED,
                    version=state.version,
                    elapsed_seconds=time.perf_counter() - started,
                )
            else:
                missing_types = sorted(
                    {t for c in broken for t in c.missing_embeddings(expected)}, key=lambda t: t.value
                )
                await self._tracker.update(
                    job.job_id, IngestionPhase.EMBEDDING, 30.0, f"repairing {len(broken)} chunks"
                )
                with self._component(Component.EMBEDDER):
                    batch = await self._generator.embed(broken, missing_types, context=chunks)

                originals = {c.chunk_id: c for c in broken}
                repaired: list[Chunk] = []
                for chunk in batch.chunks:
                    merged = {**originals[chunk.chunk_id].embeddings, **chunk.embeddings}
                    repaired.append(chunk.model_copy(update={"embeddings": merged}))
                still_missing = [
                    f
                    for f in batch.failures
                    if f.embedding_type not in originals[f.chunk_id].embeddings
                ]
                state.embeddings_generated = batch.embeddings_generated
                state.failures = still_missing

                await self._tracker.update(job.job_id, IngestionPhase.STORING, 70.0, "storing repairs")
                with self._component(Component.STORE):
                    await self._store_call(self._store.upsert_chunks(repaired))

                by_id = {c.chunk_id: c for c in chunks}
                by_id.update({c.chunk_id: c for c in repaired})
                with self._component(Component.VALIDATOR):
                    state.report = self._validator.validate_chunks(list(by_id.values()), scope=source_id)

                status = JobStatus.PARTIAL if still_missing else JobStatus.COMPLETED
                if source is not None:
                    with self._component(Component.REGISTRY):
                        await self._registry.save_source(
                            source.model_copy(
                                update={
                                    "processing_status": (
                                        ProcessingStatus.COMPLETED
                                        if status is JobStatus.COMPLETED
                                        else ProcessingStatus.PENDING
                                    ),
                                    "updated_at": datetime.now(tz=timezone.utc),
                                }
                            )
                        )
                result = IngestionResult(
                    job_id=job.job_id,
                    source_id=source_id,
                    status=status,
                    version=state.version,
                    embeddings_generated=state.embeddings_generated,
                    embedding_failures=still_missing,
                    quality_report=state.report,
                    retryable=bool(still_missing),
                    elapsed_seconds=time.perf_counter() - started,
                )
                self._logger.info(
                    "embeddings_repaired",
                    source_id=source_id,
                    chunks=len(broken),
                    generated=batch.embeddings_generated,
                    still_missing=len(still_missing),
                )
        except IngestionError as exc:
            result = IngestionResult(
                job_id=job.job_id,
                source_id=source_id,
                status=JobStatus.FAILED,
                version=state.version,
                embeddings_generated=state.embeddings_generated,
                embedding_failures=state.failures,
                causes=cause_chain(exc),
                retryable=exc.retryable,
                elapsed_seconds=time.perf_counter() - started,
            )
            self._logger.error(
                "embedding_repair_failed",
                source_id=source_id,
                component=exc.component,
                error=str(exc.__cause__ or exc),
            )

        await self._finish(job, result)
        return result

    async def delete_source(self, source_id: str) -> int:
        """Remove a source's chunks and registry record; return chunks deleted."""
        deleted = await self._store_call(self._store.delete_by_source(source_id))
        existed = await self._registry.delete_source(source_id)
        self._logger.info("source_deleted", source_id=source_id, chunks_deleted=deleted, registered=existed)
        return deleted

    # ------------------------------------------------------------------
    # Retrieval
    # ------------------------------------------------------------------

    async def retrieve_context(
        self,
        query: str,
        config: RetrievalConfig | None = None,
    ) -> RetrievalResult:
        """Return the ordered context set for *query*."""
        return await self._retriever.retrieve(query, config)

    async def validate(self, source_id: str | None = None) -> ValidationReport:
        """Grade stored chunks of one source, or of the whole corpus."""
        return await self._validator.validate(source_id)

    # ------------------------------------------------------------------
    # Jobs and stats
    # ------------------------------------------------------------------

    async def get_job(self, job_id: str) -> IngestionJob | None:
        return self._tracker.get(job_id) or await self._registry.get_job(job_id)

    async def list_jobs(
        self,
        status: JobStatus | None = None,
        source_id: str | None = None,
        limit: int = 100,
    ) -> list[IngestionJob]:
        return await self._registry.list_jobs(status=status, source_id=source_id, limit=limit)

    async def get_stats(self) -> dict[str, Any]:
        sources = await self._registry.list_sources()
        stored = await self._store_call(self._store.get_source_ids())
        return {
            "registered_sources": len(sources),
            "sources_by_status": dict(Counter(s.processing_status.value for s in sources)),
            "stored_sources": len(stored),
            "stored_chunks": sum(s.chunk_count for s in sources),
            "jobs_by_status": dict(self._status_counts),
            "active_jobs": len(self._tracker.active_jobs()),
            "max_workers": self._max_workers,
            "vector_store": self._store.get_provider_name(),
            "embedding_provider": self._generator.provider.get_provider_name(),
            "embedding": self._generator.stats(),
            "cache": await self._generator.cache.stats(),
            "retrieval": self._retriever.get_stats(),
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @contextlib.contextmanager
    def _component(self, component: Component) -> Iterator[None]:
        """Re-raise any failure inside the block as an :class:`IngestionError`."""
        try:
            yield
        except IngestionError:
            raise
        except Exception as exc:
            raise IngestionError(
                message=f"{component.value} failed: {exc}",
                provider_name=exc.provider_name if isinstance(exc, RagCoreError) else None,
                component=component.value,
                retryable=_is_retryable(exc),
            ) from exc

    async def _store_call(self, awaitable):
        provider = self._store.get_provider_name()
        return await with_timeout(
            awaitable,
            self._store_timeout,
            lambda: StoreUnavailableError(
                message=f"Vector store did not answer within {self._store_timeout}s",
                provider_name=provider,
            ),
        )

    async def _mark_source_failed(self, source_id: str, version: int) -> None:
        if version == 0:
            return
        try:
            source = await self._registry.get_source(source_id)
            if source is not None:
                await self._registry.save_source(
                    source.model_copy(
                        update={
                            "processing_status": ProcessingStatus.FAILED,
                            "updated_at": datetime.now(tz=timezone.utc),
                        }
                    )
                )
        except RegistryError as exc:
            self._logger.error("registry_mark_failed_error", source_id=source_id, error=str(exc))

    async def _finish(self, job: IngestionJob, result: IngestionResult) -> None:
        finished = await self._tracker.finish(job.job_id, result)
        self._status_counts[result.status.value] += 1
        try:
            await self._registry.save_job(finished)
        except RegistryError as exc:
            self._logger.error("registry_save_job_error", job_id=job.job_id, error=str(exc))
        self._logger.info(
            "ingestion_finished",
            source_id=result.source_id,
            job_id=result.job_id,
            status=result.status.value,
            version=result.version,
            chunks_created=result.chunks_created,
            embeddings_generated=result.embeddings_generated,
            embedding_failures=len(result.embedding_failures),
            quality_score=result.quality_report.overall_score if result.quality_report else None,
            elapsed_seconds=round(result.elapsed_seconds, 3),
        )
