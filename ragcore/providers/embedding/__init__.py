"""Embedding provider implementations.

Two implementations of IEmbeddingProvider:
    1. OpenAIEmbeddingProvider    -- text-embedding-3-small (1536 dims) or any
       OpenAI-compatible API.  Requires an API key.
    2. FastEmbedEmbeddingProvider -- local ONNX model, no API key.  Needs the
       ``local`` extra; imported directly where needed so the package imports
       without fastembed installed.
"""

from ragcore.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
