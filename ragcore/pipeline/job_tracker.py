"""Ingestion job tracking with callback-based listener notification.

Holds the live :class:`IngestionJob` snapshot for every running job and
broadcasts each phase change to registered listeners.  Listeners are keyed
by job ID, with ``None`` meaning "every job", so a CLI progress printer and
a per-job waiter can coexist.

# ─── HOW JOB TRACKING WORKS ─────────────────────────────────────────
#
#   Orchestrator ──update()──→ JobTracker ──callback(job)──→ CLI printer
#                                                       ──→ (any other listener)
#
#   1. ``start`` creates a PROCESSING job in the QUEUED phase
#   2. ``update`` moves it through loading/chunking/embedding/storing/
#      validating with a progress percentage
#   3. ``finish`` stamps the result, final status and finished_at
#
# Snapshots are frozen models replaced via ``model_copy``.  Listener
# errors are caught and logged; a broken listener never fails ingestion.
# ──────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable
from datetime import datetime, timezone

import structlog

from ragcore.models.ingestion import IngestionJob, IngestionPhase, IngestionResult, JobStatus
from ragcore.utils.logging import get_logger


class JobTracker:
    """Tracks and broadcasts ingestion job progress via callbacks."""

    def __init__(self) -> None:
        self._jobs: dict[str, IngestionJob] = {}
        self._listeners: dict[str | None, list[Callable]] = {}
        self._logger: structlog.BoundLogger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self, source_id: str) -> IngestionJob:
        """Create and announce a new job for *source_id*."""
        job = IngestionJob(
            job_id=uuid.uuid4().hex,
            source_id=source_id,
            status=JobStatus.PROCESSING,
            phase=IngestionPhase.QUEUED,
        )
        self._jobs[job.job_id] = job
        await self._notify_listeners(job)
        return job

    async def update(
        self,
        job_id: str,
        phase: IngestionPhase,
        progress: float,
        message: str = "",
    ) -> IngestionJob:
        """Record a phase change and notify listeners.

        Parameters
        ----------
        job_id:
            Job to update.  Unknown IDs raise ``KeyError``.
        phase:
            The phase the job just entered.
        progress:
            Completion percentage, clamped to 0-100.
        message:
            Human-readable status message.
        """
        progress = max(0.0, min(100.0, progress))
        job = self._jobs[job_id].model_copy(
            update={"phase": phase, "progress": progress, "message": message}
        )
        self._jobs[job_id] = job

        self._logger.debug(
            "job_progress_update",
            job_id=job_id,
            source_id=job.source_id,
            phase=phase.value,
            progress=round(progress, 1),
            message=message,
        )
        await self._notify_listeners(job)
        return job

    async def finish(self, job_id: str, result: IngestionResult) -> IngestionJob:
        """Stamp *result* on the job and drop it from the live set."""
        job = self._jobs.pop(job_id).model_copy(
            update={
                "status": result.status,
                "phase": IngestionPhase.DONE,
                "progress": 100.0,
                "message": result.status.value,
                "finished_at": datetime.now(tz=timezone.utc),
                "result": result,
            }
        )
        await self._notify_listeners(job)
        self._listeners.pop(job_id, None)
        return job

    def get(self, job_id: str) -> IngestionJob | None:
        return self._jobs.get(job_id)

    def active_jobs(self) -> list[IngestionJob]:
        return sorted(self._jobs.values(), key=lambda j: (j.started_at, j.job_id))

    def register_listener(self, callback: Callable, job_id: str | None = None) -> None:
        """Register a sync or async ``callback(job)``; ``job_id=None`` listens to every job."""
        listeners = self._listeners.setdefault(job_id, [])
        if callback not in listeners:
            listeners.append(callback)

    def unregister_listener(self, callback: Callable, job_id: str | None = None) -> None:
        listeners = self._listeners.get(job_id, [])
        if callback in listeners:
            listeners.remove(callback)

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _notify_listeners(self, job: IngestionJob) -> None:
        listeners = [*self._listeners.get(job.job_id, []), *self._listeners.get(None, [])]
        for callback in listeners:
            try:
                result = callback(job)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as exc:
                self._logger.warning(
                    "job_listener_callback_error",
                    job_id=job.job_id,
                    error=str(exc),
                    callback=getattr(callback, "__name__", repr(callback)),
                )
