"""Multi-scale embedding generation and the two-tier embedding cache."""

from ragcore.services.embedding.embedding_cache import EmbeddingCache
from ragcore.services.embedding.multi_scale_generator import (
    MultiScaleEmbeddingGenerator,
    check_vector,
)

__all__ = ["EmbeddingCache", "MultiScaleEmbeddingGenerator", "check_vector"]
