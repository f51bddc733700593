"""Retrieval models: strategies, filters, configuration and results.

Retrieval strategies form a closed tagged union discriminated by ``kind``:

    VectorOnlyStrategy  -- one similarity query against one embedding type
    HybridStrategy      -- vector similarity blended with keyword overlap
    MultiScaleStrategy  -- query several embedding types, union the results
    ContextualStrategy  -- vector-only, then always expand by hierarchy

:func:`ragcore.services.retrieval.query_classifier.select_strategy` is the
only place that picks a variant, and the retriever dispatches on ``kind``
with an exhaustive ``match``.  Retrieval results are ephemeral: produced per
query and never persisted.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from ragcore.models.chunk import Chunk, EmbeddingType, ScaleType
from ragcore.models.embedding import ALL_EMBEDDING_TYPES


class StrategyName(str, Enum):
    VECTOR_ONLY = "vector_only"
    HYBRID = "hybrid"
    MULTI_SCALE = "multi_scale"
    CONTEXTUAL = "contextual"


class QueryKind(str, Enum):
    SINGLE_FACT = "single_fact"
    MULTI_HOP = "multi_hop"
    BROAD = "broad"


class ExpansionReason(str, Enum):
    """Why a chunk is in the result set."""

    PRIMARY = "primary"            # matched the query directly
    HIERARCHICAL = "hierarchical"  # parent of a primary match
    SEMANTIC = "semantic"          # similar sibling of a primary match
    TEMPORAL = "temporal"          # adjacent chunk of the same source


# ---------------------------------------------------------------------------
# Strategy variants
# ---------------------------------------------------------------------------
class VectorOnlyStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["vector_only"] = "vector_only"
    embedding_type: EmbeddingType = EmbeddingType.CONTENT


class HybridStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["hybrid"] = "hybrid"
    embedding_type: EmbeddingType = EmbeddingType.CONTENT
    vector_weight: float = Field(default=0.7, ge=0.0, le=1.0)
    keyword_weight: float = Field(default=0.3, ge=0.0, le=1.0)


class MultiScaleStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["multi_scale"] = "multi_scale"
    embedding_types: list[EmbeddingType] = Field(default_factory=lambda: list(ALL_EMBEDDING_TYPES))


class ContextualStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["contextual"] = "contextual"
    embedding_type: EmbeddingType = EmbeddingType.CONTENT


RetrievalStrategy = Annotated[
    Union[VectorOnlyStrategy, HybridStrategy, MultiScaleStrategy, ContextualStrategy],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Query profile
# ---------------------------------------------------------------------------
class QueryProfile(BaseModel):
    """Result of classifying a query."""

    model_config = ConfigDict(frozen=True)

    query: str
    kind: QueryKind
    sub_queries: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)
    has_exact_terms: bool = Field(
        default=False,
        description="Query contains quoted phrases, codes or numbers that favour keyword matching.",
    )


# ---------------------------------------------------------------------------
# Store-facing filter and scored reference
# ---------------------------------------------------------------------------
class ChunkFilter(BaseModel):
    """Metadata predicates understood by every vector store adapter."""

    model_config = ConfigDict(frozen=True)

    source_ids: list[str] | None = None
    min_quality: float | None = Field(default=None, ge=0.0, le=1.0)
    max_quality: float | None = Field(default=None, ge=0.0, le=1.0)
    ingested_after: datetime | None = None
    ingested_before: datetime | None = None
    scale_types: list[ScaleType] | None = None

    def is_empty(self) -> bool:
        return all(v is None for v in self.model_dump().values())

    def matches(self, chunk: Chunk) -> bool:
        if self.source_ids is not None and chunk.source_id not in self.source_ids:
            return False
        if self.min_quality is not None and chunk.quality_score < self.min_quality:
            return False
        if self.max_quality is not None and chunk.quality_score > self.max_quality:
            return False
        if self.ingested_after is not None and (
            chunk.ingested_at is None or chunk.ingested_at < self.ingested_after
        ):
            return False
        if self.ingested_before is not None and (
            chunk.ingested_at is None or chunk.ingested_at > self.ingested_before
        ):
            return False
        if self.scale_types is not None and chunk.scale_type not in self.scale_types:
            return False
        return True


class ScoredChunk(BaseModel):
    """A chunk returned by a store query with its similarity score."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    score: float = Field(ge=0.0, le=1.0)


# ---------------------------------------------------------------------------
# Retrieval configuration and result
# ---------------------------------------------------------------------------
class RetrievalConfig(BaseModel):
    """Per-call retrieval parameters."""

    model_config = ConfigDict(frozen=True)

    max_retrieved_chunks: int = Field(default=10, ge=1)
    retrieval_strategy: StrategyName | None = Field(
        default=None,
        description="Force a strategy instead of classifying the query.",
    )
    embedding_types: list[EmbeddingType] = Field(
        default_factory=lambda: list(ALL_EMBEDDING_TYPES),
        description="Embedding types the multi-scale strategy may query.",
    )
    candidate_multiplier: int = Field(default=3, ge=1)
    expansion_max_count: int = Field(default=3, ge=0)
    expand_hierarchical: bool = True
    expand_semantic: bool = True
    expand_temporal: bool = False
    sibling_similarity_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    dedup_threshold: float = Field(default=0.9, ge=0.0, le=1.0)
    reorder_for_long_context: bool = True
    max_sub_queries: int = Field(default=4, ge=1)
    store_timeout_seconds: float = Field(default=10.0, gt=0.0)
    filters: ChunkFilter = Field(default_factory=ChunkFilter)


class RetrievedContext(BaseModel):
    """One entry of a retrieval result."""

    model_config = ConfigDict(frozen=True)

    chunk: Chunk
    relevance_score: float = Field(ge=0.0, le=1.0)
    expansion_reason: ExpansionReason = ExpansionReason.PRIMARY
    expanded_from: str | None = Field(
        default=None,
        description="chunk_id of the primary match this entry was expanded from.",
    )


class RetrievalResult(BaseModel):
    """Ordered context set for one query."""

    model_config = ConfigDict(frozen=True)

    query: str
    strategy: StrategyName
    query_kind: QueryKind
    sub_queries: list[str] = Field(default_factory=list)
    items: list[RetrievedContext] = Field(default_factory=list)
    system_query: bool = False
    elapsed_ms: float = Field(default=0.0, ge=0.0)

    @property
    def chunk_ids(self) -> list[str]:
        return [item.chunk.chunk_id for item in self.items]
