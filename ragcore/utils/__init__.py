"""Utility modules for ragcore.

Available utility modules (all re-exported here for convenience):

- **errors** -- Domain-specific exception hierarchy rooted at RagCoreError;
  each pipeline component raises its own subclass so the orchestrator can
  record which stage failed and whether a retry makes sense.
- **concurrency** -- asyncio semaphore throttling, deadlines and a token
  bucket that keep embedding and vector store calls under provider limits.
- **logging** -- structlog setup with a dual-renderer pattern: coloured
  console output in development, structured JSON in production.
- **text** -- Whitespace token counting, content hashing, keyword
  extraction and the lexical similarity used for sibling and duplicate
  detection.
"""

# -- Async concurrency helpers ---------------------------------------------
from ragcore.utils.concurrency import TokenBucket, throttled_gather, with_timeout

# -- Domain exception hierarchy --------------------------------------------
from ragcore.utils.errors import (
    ConfigurationError,
    EmbeddingIncompleteError,
    IngestionError,
    ProviderError,
    QualityGateError,
    RagCoreError,
    RateLimitError,
    RegistryError,
    StoreUnavailableError,
    ValidationError,
)

# -- Structured logging setup ----------------------------------------------
from ragcore.utils.logging import configure_logging, get_logger, job_context

# -- Text helpers ----------------------------------------------------------
from ragcore.utils.text import count_tokens, extract_keywords, sha256_hex, text_similarity

__all__ = [
    "ConfigurationError",
    "EmbeddingIncompleteError",
    "IngestionError",
    "ProviderError",
    "QualityGateError",
    "RagCoreError",
    "RateLimitError",
    "RegistryError",
    "StoreUnavailableError",
    "TokenBucket",
    "ValidationError",
    "configure_logging",
    "count_tokens",
    "extract_keywords",
    "get_logger",
    "job_context",
    "sha256_hex",
    "text_similarity",
    "throttled_gather",
    "with_timeout",
]
