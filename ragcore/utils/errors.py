"""Custom exception hierarchy for ragcore.

All library exceptions inherit from :class:`RagCoreError`, which carries an
optional ``provider_name`` so error handlers can identify which external
service (e.g. "openai", "chromadb", "sqlite") caused the failure.

The hierarchy follows the pipeline's components:

    RagCoreError  (base -- catch-all for any ragcore error)
    +-- ValidationError          (malformed input; recovered locally by the chunker)
    +-- ConfigurationError       (startup / invalid config)
    +-- ProviderError            (embedding/model call failure, carries ``retryable``)
    |   +-- RateLimitError           (provider rate-limit exceeded)
    |   +-- EmbeddingIncompleteError (vectors missing after retries)
    +-- StoreUnavailableError    (vector store unreachable or timed out)
    +-- RegistryError            (source / job registry failure)
    +-- QualityGateError         (validation score below a configured hard gate)
    +-- IngestionError           (orchestrator wrapper naming the failed component)

Callers retry on ``ProviderError.retryable``, fail fast on
``StoreUnavailableError`` and surface ``IngestionError.component`` to job
consumers.
"""

from __future__ import annotations


class RagCoreError(Exception):
    """Base exception for all ragcore errors.

    Every subclass carries a human-readable ``message`` and an optional
    ``provider_name`` identifying which external service triggered the
    error.  ``__str__`` prefixes the provider name in brackets, e.g.
    ``[openai] Rate limit exceeded``.
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        provider_name: str | None = None,
    ) -> None:
        self._message = message
        self._provider_name = provider_name
        super().__init__(self._message)

    @property
    def message(self) -> str:
        return self._message

    @property
    def provider_name(self) -> str | None:
        return self._provider_name

    def __str__(self) -> str:
        if self._provider_name:
            return f"[{self._provider_name}] {self._message}"
        return self._message


# ---------------------------------------------------------------------------
# Input / configuration errors
# ---------------------------------------------------------------------------

class ValidationError(RagCoreError):
    """Raised for malformed input (document metadata, query text, config values)."""

    def __init__(
        self,
        message: str = "Malformed input",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class ConfigurationError(RagCoreError):
    """Raised when configuration is invalid or missing at startup."""

    def __init__(
        self,
        message: str = "Invalid or missing configuration",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Embedding provider errors
# ---------------------------------------------------------------------------

class ProviderError(RagCoreError):
    """Raised when an embedding or model call fails.

    ``retryable`` tells the caller whether backing off and trying again can
    succeed (timeouts, 5xx, rate limits) or not (bad credentials, bad input).
    """

    def __init__(
        self,
        message: str = "Embedding provider call failed",
        provider_name: str | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        return self._retryable


class RateLimitError(ProviderError):
    """Raised when a provider rate limit is exceeded.

    Always retryable; the embedding generator backs off exponentially.
    """

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, retryable=True)


class EmbeddingIncompleteError(ProviderError):
    """Raised when one or more chunk embeddings stayed absent after retries.

    ``failures`` holds the :class:`~ragcore.models.embedding.EmbeddingFailure`
    records so callers can re-embed exactly what is missing.
    """

    def __init__(
        self,
        message: str = "Embeddings incomplete",
        provider_name: str | None = None,
        failures: list | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name, retryable=True)
        self._failures = list(failures or [])

    @property
    def failures(self) -> list:
        return self._failures


# ---------------------------------------------------------------------------
# Storage errors
# ---------------------------------------------------------------------------

class StoreUnavailableError(RagCoreError):
    """Raised when the vector store is unreachable or a call times out.

    Fatal for the calling operation: retrieval never degrades to an empty
    result set that could be mistaken for "no relevant content".
    """

    def __init__(
        self,
        message: str = "Vector store is unavailable",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


class RegistryError(RagCoreError):
    """Raised when the source/job registry cannot be read or written."""

    def __init__(
        self,
        message: str = "Source registry operation failed",
        provider_name: str | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)


# ---------------------------------------------------------------------------
# Quality / orchestration errors
# ---------------------------------------------------------------------------

class QualityGateError(RagCoreError):
    """Raised when a validation report scores below the configured hard gate."""

    def __init__(
        self,
        message: str = "Quality gate not met",
        provider_name: str | None = None,
        score: float | None = None,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._score = score

    @property
    def score(self) -> float | None:
        return self._score


class IngestionError(RagCoreError):
    """Raised by the orchestrator when a pipeline stage fails.

    ``component`` names the failing stage (loader, chunker, embedder,
    store, validator, registry).  The original exception is chained via
    ``__cause__`` so the full cause chain can be reported to job consumers.
    """

    def __init__(
        self,
        message: str = "Ingestion failed",
        provider_name: str | None = None,
        component: str = "unknown",
        retryable: bool = False,
    ) -> None:
        super().__init__(message=message, provider_name=provider_name)
        self._component = component
        self._retryable = retryable

    @property
    def component(self) -> str:
        return self._component

    @property
    def retryable(self) -> bool:
        return self._retryable
