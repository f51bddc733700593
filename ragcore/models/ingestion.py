"""Ingestion state models: source documents, jobs and results.

Only the :class:`~ragcore.pipeline.orchestrator.IngestionOrchestrator`
creates or advances these records.  State transitions produce new
instances via ``model_copy(update={...})`` so any intermediate job state
can be persisted to the SQLite registry as-is.

Job lifecycle:
    PENDING -> PROCESSING -> COMPLETED   every expected embedding attached
                          -> PARTIAL     chunks stored, some embeddings absent
                          -> FAILED      a stage raised; ``causes`` says which
                          -> SKIPPED     unchanged source, nothing to do
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from ragcore.models.embedding import EmbeddingFailure
from ragcore.models.quality import ValidationReport


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL = "partial"
    FAILED = "failed"
    SKIPPED = "skipped"


class IngestionPhase(str, Enum):
    """Stages of one ingestion run, in order."""

    QUEUED = "queued"
    LOADING = "loading"
    CHUNKING = "chunking"
    EMBEDDING = "embedding"
    STORING = "storing"
    VALIDATING = "validating"
    DONE = "done"


class Component(str, Enum):
    """Pipeline component named in a failure cause."""

    LOADER = "loader"
    CHUNKER = "chunker"
    EMBEDDER = "embedder"
    STORE = "store"
    VALIDATOR = "validator"
    REGISTRY = "registry"


# ---------------------------------------------------------------------------
# SourceDocument
# ---------------------------------------------------------------------------
class SourceDocument(BaseModel):
    """A document known to the knowledge base."""

    model_config = ConfigDict(frozen=True)

    source_id: str = Field(min_length=1)
    hash: str = Field(default="", description="sha256 of the document text.")
    version: int = Field(default=1, ge=1)
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    filename: str = ""
    total_pages: int = Field(default=0, ge=0)
    config_fingerprint: str = ""
    chunk_count: int = Field(default=0, ge=0)
    updated_at: datetime = Field(default_factory=_utcnow)


# ---------------------------------------------------------------------------
# Failure causes and results
# ---------------------------------------------------------------------------
class FailureCause(BaseModel):
    """One link of a failed job's cause chain, outermost first."""

    model_config = ConfigDict(frozen=True)

    component: Component
    error_type: str
    message: str
    retryable: bool = False


class IngestionResult(BaseModel):
    """Outcome of ingesting one source document."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    source_id: str
    status: JobStatus
    version: int = Field(default=0, ge=0)
    chunks_created: int = Field(default=0, ge=0)
    embeddings_generated: int = Field(default=0, ge=0)
    embedding_failures: list[EmbeddingFailure] = Field(default_factory=list)
    quality_report: ValidationReport | None = None
    causes: list[FailureCause] = Field(default_factory=list)
    retryable: bool = False
    elapsed_seconds: float = Field(default=0.0, ge=0.0)

    @property
    def failed_component(self) -> Component | None:
        return self.causes[0].component if self.causes else None


class IngestionJob(BaseModel):
    """Job-level status exposed to job managers and monitoring UIs."""

    model_config = ConfigDict(frozen=True)

    job_id: str
    source_id: str
    status: JobStatus = JobStatus.PENDING
    phase: IngestionPhase = IngestionPhase.QUEUED
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    message: str = ""
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None
    result: IngestionResult | None = None
