"""Ingestion orchestration components for ragcore."""

from ragcore.pipeline.job_tracker import JobTracker
from ragcore.pipeline.orchestrator import IngestionOrchestrator, cause_chain

__all__ = [
    "IngestionOrchestrator",
    "JobTracker",
    "cause_chain",
]
