"""Pydantic v2 domain models for ragcore.

All records are frozen; updated versions are produced with
``model_copy(update={...})``.

- **chunk** -- Chunk, scale/embedding/strategy enums, chunking config and
  loader metadata.
- **forest** -- ChunkForest arena and the pure ``validate_forest`` check.
- **embedding** -- generator config, cache entries, batch results.
- **retrieval** -- strategy tagged union, filters, retrieval config/result.
- **quality** -- validation report, violations, grades.
- **ingestion** -- source documents, jobs, ingestion results.
"""

from ragcore.models.chunk import (
    BoundaryKind,
    Chunk,
    ChunkingConfig,
    ChunkStrategy,
    DocumentMetadata,
    EmbeddingType,
    LoadedDocument,
    ScaleType,
    SemanticBoundary,
)
from ragcore.models.embedding import (
    ALL_EMBEDDING_TYPES,
    CacheEntry,
    EmbeddingBatchResult,
    EmbeddingConfig,
    EmbeddingFailure,
)
from ragcore.models.forest import ChunkForest, ForestIssue, validate_forest
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
from ragcore.models.quality import (
    QualityGrade,
    QualityViolation,
    Remediation,
    Severity,
    ValidationConfig,
    ValidationReport,
    ViolationKind,
)
from ragcore.models.retrieval import (
    ChunkFilter,
    ContextualStrategy,
    ExpansionReason,
    HybridStrategy,
    MultiScaleStrategy,
    QueryKind,
    QueryProfile,
    RetrievalConfig,
    RetrievalResult,
    RetrievalStrategy,
    RetrievedContext,
    ScoredChunk,
    StrategyName,
    VectorOnlyStrategy,
)

__all__ = [
    "ALL_EMBEDDING_TYPES",
    "BoundaryKind",
    "CacheEntry",
    "Chunk",
    "ChunkFilter",
    "ChunkForest",
    "ChunkStrategy",
    "ChunkingConfig",
    "Component",
    "ContextualStrategy",
    "DocumentMetadata",
    "EmbeddingBatchResult",
    "EmbeddingConfig",
    "EmbeddingFailure",
    "EmbeddingType",
    "ExpansionReason",
    "FailureCause",
    "ForestIssue",
    "HybridStrategy",
    "IngestionJob",
    "IngestionPhase",
    "IngestionResult",
    "JobStatus",
    "LoadedDocument",
    "MultiScaleStrategy",
    "ProcessingStatus",
    "QualityGrade",
    "QualityViolation",
    "QueryKind",
    "QueryProfile",
    "Remediation",
    "RetrievalConfig",
    "RetrievalResult",
    "RetrievalStrategy",
    "RetrievedContext",
    "ScaleType",
    "ScoredChunk",
    "SemanticBoundary",
    "Severity",
    "SourceDocument",
    "StrategyName",
    "ValidationConfig",
    "ValidationReport",
    "VectorOnlyStrategy",
    "ViolationKind",
    "validate_forest",
]
