"""Embedding-stage models: generator config, cache entries and batch results."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

from ragcore.models.chunk import Chunk, EmbeddingType
from ragcore.utils.errors import EmbeddingIncompleteError

ALL_EMBEDDING_TYPES: tuple[EmbeddingType, ...] = (
    EmbeddingType.CONTENT,
    EmbeddingType.CONTEXTUAL,
    EmbeddingType.HIERARCHICAL,
    EmbeddingType.SEMANTIC,
)


class EmbeddingConfig(BaseModel):
    """Batching, retry and input-building parameters of the embedding generator."""

    model_config = ConfigDict(frozen=True)

    embedding_types: list[EmbeddingType] = Field(default_factory=lambda: list(ALL_EMBEDDING_TYPES))
    batch_size: int = Field(default=100, ge=1)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base_seconds: float = Field(default=0.5, ge=0.0)
    backoff_max_seconds: float = Field(default=8.0, ge=0.0)
    request_timeout_seconds: float = Field(default=30.0, gt=0.0)
    requests_per_second: float = Field(
        default=5.0,
        ge=0.0,
        description="Global provider rate limit; 0 disables the token bucket.",
    )
    context_window_tokens: int = Field(
        default=64,
        ge=0,
        description="Tokens of parent/sibling text placed around contextual inputs.",
    )
    keyword_boost_repeats: int = Field(
        default=2,
        ge=1,
        description="How many times detected domain terms are repeated in semantic inputs.",
    )
    domain_keywords: list[str] | None = Field(
        default=None,
        description="Override for the built-in domain vocabulary.",
    )


class CacheEntry(BaseModel):
    """A cached embedding vector.

    The vector is never rewritten after ``put``; only ``access_count``
    changes as the entry is read.
    """

    model_config = ConfigDict(frozen=True)

    key: str
    vector: list[float]
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=timezone.utc))
    access_count: int = Field(default=0, ge=0)


class EmbeddingFailure(BaseModel):
    """A chunk/type pair whose embedding is absent after retries."""

    model_config = ConfigDict(frozen=True)

    chunk_id: str
    embedding_type: EmbeddingType
    reason: str
    error_type: str = "ProviderError"
    attempts: int = Field(default=1, ge=0)


class EmbeddingBatchResult(BaseModel):
    """Chunks with embeddings attached, plus every embedding left absent."""

    model_config = ConfigDict(frozen=True)

    chunks: list[Chunk] = Field(default_factory=list)
    failures: list[EmbeddingFailure] = Field(default_factory=list)
    embeddings_generated: int = Field(default=0, ge=0, description="Vectors attached (cache hits included).")
    cache_hits: int = Field(default=0, ge=0)
    provider_calls: int = Field(default=0, ge=0)

    @property
    def complete(self) -> bool:
        return not self.failures

    def raise_for_failures(self) -> None:
        """Raise :class:`EmbeddingIncompleteError` when any embedding is absent."""
        if self.failures:
            raise EmbeddingIncompleteError(
                message=(
                    f"{len(self.failures)} embedding(s) absent across "
                    f"{len({f.chunk_id for f in self.failures})} chunk(s)"
                ),
                failures=list(self.failures),
            )
