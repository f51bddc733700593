"""Abstract base class for the source and job registry.

The vector store holds chunks; the registry holds everything the
orchestrator needs to decide whether and how to (re-)ingest a source:
content hash, version, processing status and the history of ingestion jobs.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from ragcore.models.ingestion import IngestionJob, JobStatus, SourceDocument


# Concrete implementation: SQLiteSourceRegistry (ragcore/providers/registry/)
class ISourceRegistry(ABC):
    """Contract for persisting source documents and ingestion jobs."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables if they do not exist.  Idempotent."""

    @abstractmethod
    async def close(self) -> None:
        """Release resources.  Idempotent."""

    @abstractmethod
    async def get_source(self, source_id: str) -> SourceDocument | None:
        """Return the registered source, or ``None`` if unknown."""

    @abstractmethod
    async def save_source(self, source: SourceDocument) -> None:
        """Insert or replace a source record."""

    @abstractmethod
    async def delete_source(self, source_id: str) -> bool:
        """Remove a source record; return ``True`` if it existed."""

    @abstractmethod
    async def list_sources(self) -> list[SourceDocument]:
        """Return every registered source ordered by ``source_id``."""

    @abstractmethod
    async def save_job(self, job: IngestionJob) -> None:
        """Insert or replace a job record."""

    @abstractmethod
    async def get_job(self, job_id: str) -> IngestionJob | None:
        """Return a job by ID, or ``None`` if unknown."""

    @abstractmethod
    async def list_jobs(
        self,
        status: JobStatus | None = None,
        source_id: str | None = None,
        limit: int = 100,
    ) -> list[IngestionJob]:
        """Return jobs, newest first, optionally filtered."""
