"""Abstract base class for text-embedding service providers.

Defines the contract for generating embedding vectors from text.
Implementations may wrap OpenAI ``text-embedding-3-small``, a local
FastEmbed ONNX model, or any other embedding backend.  The multi-scale
embedding generator only ever talks to this interface, so providers are
interchangeable and tests can inject a deterministic fake.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementations (ragcore/providers/embedding/):
#   OpenAIEmbeddingProvider     -- text-embedding-3-small or any OpenAI-compatible API
#   FastEmbedEmbeddingProvider  -- local ONNX model, no API key
class IEmbeddingProvider(ABC):
    """Contract for text-embedding services used by the embedding generator."""

    @abstractmethod
    async def embed(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            One or more text strings to embed.

        Returns
        -------
        list[list[float]]
            Embedding vectors corresponding positionally to *texts*.  Each
            inner list should have length :meth:`get_dimension`; the
            generator validates this and never trusts it blindly.

        Raises
        ------
        ragcore.utils.errors.ProviderError
            If the embedding API call fails.  ``retryable`` tells the
            generator whether to back off and try again.
        ragcore.utils.errors.RateLimitError
            If the provider signals a rate limit.
        """

    @abstractmethod
    async def embed_single(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the dimensionality of the embedding vectors.

        Must stay constant for the lifetime of the provider and match the
        dimension of vectors already stored in the vector store.
        """

    @abstractmethod
    def get_model_name(self) -> str:
        """Return the model identifier.

        The embedding cache includes it in every key, so switching models
        never serves vectors produced by the previous one.
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai_embedding"``."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return ``True`` if the provider is configured (credentials present, model loadable)."""
