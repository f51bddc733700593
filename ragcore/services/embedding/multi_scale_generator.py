"""Multi-scale embedding generation with caching, rate limiting and retries.

Each chunk can carry up to four vectors, one per
:class:`~ragcore.models.chunk.EmbeddingType`, each computed from a different
view of the chunk:

    content       the chunk text as-is
    contextual    the text framed by its breadcrumb, the head of its parent
                  and the edges of its neighbouring siblings
    hierarchical  "Document Structure: a > b", the scale label, then the text
    semantic      domain terms found in the text repeated in a
                  "Key Concepts" prefix, then the text

Per call, inputs are built and normalized, then:

1. **Cache lookup** -- every (input, type, model) key is looked up in the
   :class:`EmbeddingCache`; hits never reach the provider.  Identical
   inputs inside one call are requested once.
2. **Batched provider calls** -- misses go out in batches of
   ``batch_size``.  Each call first takes a token from the shared
   :class:`~ragcore.utils.concurrency.TokenBucket`, has a deadline, and is
   retried with exponential backoff on retryable errors up to
   ``max_attempts``.
3. **Validation** -- returned vectors must have the provider's dimension,
   only finite values and a non-zero norm.  Invalid vectors are requested
   once more; if still invalid, that embedding is left absent (never
   zero-filled) and reported as an :class:`EmbeddingFailure`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable

import numpy as np
import structlog

from ragcore.config.domain_keywords import FUND_MANAGEMENT_KEYWORDS, find_domain_keywords
from ragcore.interfaces.embedding_provider import IEmbeddingProvider
from ragcore.models.chunk import Chunk, EmbeddingType
from ragcore.models.embedding import EmbeddingBatchResult, EmbeddingConfig, EmbeddingFailure
from ragcore.services.embedding.embedding_cache import EmbeddingCache
from ragcore.utils.concurrency import TokenBucket, with_timeout
from ragcore.utils.errors import ProviderError
from ragcore.utils.text import normalize_text

logger = structlog.get_logger(logger_name=__name__)


def check_vector(vector: list[float] | None, dimension: int | None) -> str | None:
    """Return why *vector* is unusable, or ``None`` if it is valid."""
    if vector is None:
        return "missing vector"
    try:
        arr = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError):
        return "non-numeric values"
    if arr.ndim != 1 or arr.size == 0:
        return "empty or malformed vector"
    if dimension is not None and arr.size != dimension:
        return f"dimension {arr.size} != expected {dimension}"
    if not np.all(np.isfinite(arr)):
        return "contains NaN or Infinity"
    if float(np.linalg.norm(arr)) == 0.0:
        return "zero norm"
    return None


class _RetriesExhausted(Exception):
    def __init__(self, cause: ProviderError, attempts: int) -> None:
        super().__init__(str(cause))
        self.cause = cause
        self.attempts = attempts


class MultiScaleEmbeddingGenerator:
    """Attaches content/contextual/hierarchical/semantic vectors to chunks.

    One instance is shared by every ingestion worker so its token bucket
    enforces the provider's rate limit globally.

    Parameters
    ----------
    provider:
        Embedding backend.
    cache:
        Two-tier embedding cache.  A tier-1-only cache is created when omitted.
    config:
        Batching, retry and input-building parameters.
    rate_limiter:
        Shared token bucket.  Built from ``config.requests_per_second``
        when omitted.
    sleep:
        Coroutine used for backoff delays; injectable for tests.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        cache: EmbeddingCache | None = None,
        config: EmbeddingConfig | None = None,
        rate_limiter: TokenBucket | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._provider = provider
        self._config = config or EmbeddingConfig()
        self._cache = cache or EmbeddingCache()
        self._bucket = rate_limiter or TokenBucket(self._config.requests_per_second)
        self._sleep = sleep
        self._vocabulary = tuple(self._config.domain_keywords or FUND_MANAGEMENT_KEYWORDS)

        self._cache_hits = 0
        self._cache_misses = 0
        self._provider_calls = 0
        self._retries = 0
        self._generated = 0
        self._failures = 0

    @property
    def config(self) -> EmbeddingConfig:
        return self._config

    @property
    def provider(self) -> IEmbeddingProvider:
        return self._provider

    @property
    def cache(self) -> EmbeddingCache:
        return self._cache

    # ------------------------------------------------------------------
    # Input construction
    # ------------------------------------------------------------------

    def build_input(
        self,
        chunk: Chunk,
        embedding_type: EmbeddingType,
        context: dict[str, Chunk] | None = None,
    ) -> str:
        """Return the text embedded for *chunk* under *embedding_type*.

        *context* maps chunk IDs to chunks of the same source; it supplies
        the parent and sibling text for the contextual view.
        """
        context = context or {}
        window = self._config.context_window_tokens

        if embedding_type is EmbeddingType.CONTENT:
            return chunk.content

        if embedding_type is EmbeddingType.HIERARCHICAL:
            parts = []
            if chunk.hierarchy_path:
                parts.append(f"Document Structure: {' > '.join(chunk.hierarchy_path)}")
            parts.append(f"Content Level: {chunk.scale_type.value}")
            parts.append(chunk.content)
            return "\n\n".join(parts)

        if embedding_type is EmbeddingType.SEMANTIC:
            found = find_domain_keywords(chunk.content, self._vocabulary)
            if not found:
                return chunk.content
            prefix = "\n".join(
                f"Key Concepts: {', '.join(found)}" for _ in range(self._config.keyword_boost_repeats)
            )
            return f"{prefix}\n\n{chunk.content}"

        # CONTEXTUAL
        parts = []
        if len(chunk.hierarchy_path) > 1:
            parts.append(f"Context: {' > '.join(chunk.hierarchy_path)}")
        parent = context.get(chunk.parent_chunk_id) if chunk.parent_chunk_id else None
        if parent is not None and window:
            parts.append(" ".join(parent.content.split()[:window]))
        siblings = [context[sid] for sid in chunk.sibling_chunk_ids if sid in context]
        before = [s for s in siblings if s.sequence_order < chunk.sequence_order]
        after = [s for s in siblings if s.sequence_order > chunk.sequence_order]
        half = max(1, window // 2) if window else 0
        if before and half:
            previous = max(before, key=lambda s: s.sequence_order)
            parts.append(" ".join(previous.content.split()[-half:]))
        parts.append(chunk.content)
        if after and half:
            following = min(after, key=lambda s: s.sequence_order)
            parts.append(" ".join(following.content.split()[:half]))
        return "\n\n".join(parts)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed(
        self,
        chunks: list[Chunk],
        embedding_types: Iterable[EmbeddingType] | None = None,
        context: Iterable[Chunk] | None = None,
    ) -> EmbeddingBatchResult:
        """Generate the requested embeddings for *chunks*.

        Parameters
        ----------
        chunks:
            Chunks to embed.  Existing embeddings of other types are kept.
        embedding_types:
            Types to generate; defaults to ``config.embedding_types``.
        context:
            Extra chunks of the same sources (e.g. the full forest when only
            a few chunks are re-embedded) used to build contextual inputs.

        Returns
        -------
        EmbeddingBatchResult
            Updated chunks plus one :class:`EmbeddingFailure` per embedding
            left absent.  Call ``raise_for_failures()`` to turn failures into
            :class:`~ragcore.utils.errors.EmbeddingIncompleteError`.
        """
        types = [EmbeddingType(t) for t in (embedding_types or self._config.embedding_types)]
        if not chunks or not types:
            return EmbeddingBatchResult(chunks=list(chunks))

        lookup = {c.chunk_id: c for c in (context or [])}
        lookup.update({c.chunk_id: c for c in chunks})
        model = self._provider.get_model_name()
        dimension = self._provider.get_dimension()

        keys: dict[tuple[str, EmbeddingType], str] = {}
        pending: dict[str, str] = {}
        vectors: dict[str, list[float]] = {}
        problems: dict[str, tuple[str, str, int]] = {}
        hits_before = self._cache_hits
        calls_before = self._provider_calls

        for chunk in chunks:
            for embedding_type in types:
                text = normalize_text(self.build_input(chunk, embedding_type, lookup))
                key = EmbeddingCache.make_key(text, embedding_type, model)
                keys[(chunk.chunk_id, embedding_type)] = key
                if key in vectors or key in pending or key in problems:
                    continue
                if not text:
                    problems[key] = ("empty input text", "ValidationError", 0)
                    continue
                cached = await self._cache.get(key)
                if cached is not None and check_vector(cached, dimension) is None:
                    self._cache_hits += 1
                    vectors[key] = cached
                else:
                    self._cache_misses += 1
                    pending[key] = text

        pending_keys = list(pending)
        for start in range(0, len(pending_keys), self._config.batch_size):
            batch = pending_keys[start : start + self._config.batch_size]
            await self._embed_batch(batch, pending, dimension, vectors, problems)

        updated: list[Chunk] = []
        failures: list[EmbeddingFailure] = []
        generated = 0
        for chunk in chunks:
            embeddings = dict(chunk.embeddings)
            for embedding_type in types:
                key = keys[(chunk.chunk_id, embedding_type)]
                if key in vectors:
                    embeddings[embedding_type] = list(vectors[key])
                    generated += 1
                else:
                    embeddings.pop(embedding_type, None)
                    reason, error_type, attempts = problems.get(key, ("not generated", "ProviderError", 0))
                    failures.append(
                        EmbeddingFailure(
                            chunk_id=chunk.chunk_id,
                            embedding_type=embedding_type,
                            reason=reason,
                            error_type=error_type,
                            attempts=attempts,
                        )
                    )
            updated.append(chunk.model_copy(update={"embeddings": embeddings}))

        self._generated += generated
        self._failures += len(failures)
        result = EmbeddingBatchResult(
            chunks=updated,
            failures=failures,
            embeddings_generated=generated,
            cache_hits=self._cache_hits - hits_before,
            provider_calls=self._provider_calls - calls_before,
        )
        log = logger.warning if failures else logger.info
        log(
            "embedding_batch_complete",
            chunks=len(chunks),
            types=[t.value for t in types],
            generated=generated,
            cache_hits=result.cache_hits,
            provider_calls=result.provider_calls,
            failures=len(failures),
        )
        return result

    async def embed_query(
        self,
        text: str,
        embedding_type: EmbeddingType = EmbeddingType.CONTENT,
    ) -> list[float]:
        """Embed a retrieval query through the same cache and retry path.

        Raises
        ------
        ProviderError
            If no valid vector could be produced.
        """
        embedding_type = EmbeddingType(embedding_type)
        query = normalize_text(text)
        if embedding_type is EmbeddingType.SEMANTIC:
            found = find_domain_keywords(query, self._vocabulary)
            if found:
                query = normalize_text(f"Key Concepts: {', '.join(found)} {query}")
        model = self._provider.get_model_name()
        dimension = self._provider.get_dimension()
        key = EmbeddingCache.make_key(query, embedding_type, model)

        cached = await self._cache.get(key)
        if cached is not None and check_vector(cached, dimension) is None:
            self._cache_hits += 1
            return cached
        self._cache_misses += 1

        vectors: dict[str, list[float]] = {}
        problems: dict[str, tuple[str, str, int]] = {}
        await self._embed_batch([key], {key: query}, dimension, vectors, problems)
        if key not in vectors:
            reason, _error_type, _attempts = problems[key]
            raise ProviderError(
                message=f"Query embedding failed: {reason}",
                provider_name=self._provider.get_provider_name(),
            )
        return vectors[key]

    def stats(self) -> dict[str, int]:
        return {
            "cache_hits": self._cache_hits,
            "cache_misses": self._cache_misses,
            "provider_calls": self._provider_calls,
            "retries": self._retries,
            "embeddings_generated": self._generated,
            "embedding_failures": self._failures,
        }

    # ------------------------------------------------------------------
    # Provider calls
    # ------------------------------------------------------------------

    async def _embed_batch(
        self,
        batch: list[str],
        texts: dict[str, str],
        dimension: int,
        vectors: dict[str, list[float]],
        problems: dict[str, tuple[str, str, int]],
    ) -> None:
        """Embed one batch of keys, filling *vectors* or *problems* for each."""
        try:
            returned, attempts = await self._call_with_retry([texts[k] for k in batch])
        except _RetriesExhausted as exc:
            for key in batch:
                problems[key] = (str(exc.cause), type(exc.cause).__name__, exc.attempts)
            return

        invalid: list[str] = []
        for key, vector in zip(batch, returned):
            if check_vector(vector, dimension) is None:
                vectors[key] = [float(x) for x in vector]
                await self._cache.put(key, vectors[key])
            else:
                invalid.append(key)
        if not invalid:
            return

        logger.warning("embedding_invalid_vectors_retry", count=len(invalid))
        try:
            second, more = await self._call_with_retry([texts[k] for k in invalid])
        except _RetriesExhausted as exc:
            for key in invalid:
                problems[key] = (str(exc.cause), type(exc.cause).__name__, attempts + exc.attempts)
            return
        for key, vector in zip(invalid, second):
            reason = check_vector(vector, dimension)
            if reason is None:
                vectors[key] = [float(x) for x in vector]
                await self._cache.put(key, vectors[key])
            else:
                problems[key] = (f"invalid vector: {reason}", "InvalidVector", attempts + more)

    async def _call_with_retry(self, texts: list[str]) -> tuple[list[list[float]], int]:
        """Call the provider with rate limiting, a deadline and exponential backoff.

        Returns the vectors and the number of attempts used.
        """
        cfg = self._config
        provider_name = self._provider.get_provider_name()
        attempt = 0
        while True:
            attempt += 1
            await self._bucket.acquire()
            self._provider_calls += 1
            try:
                returned = await with_timeout(
                    self._provider.embed(texts),
                    cfg.request_timeout_seconds,
                    lambda: ProviderError(
                        message=f"Embedding request timed out after {cfg.request_timeout_seconds}s",
                        provider_name=provider_name,
                        retryable=True,
                    ),
                )
                if len(returned) != len(texts):
                    raise ProviderError(
                        message=f"Provider returned {len(returned)} vectors for {len(texts)} inputs",
                        provider_name=provider_name,
                        retryable=True,
                    )
                return returned, attempt
            except ProviderError as exc:
                if not exc.retryable or attempt >= cfg.max_attempts:
                    logger.error(
                        "embedding_call_failed",
                        provider=provider_name,
                        attempts=attempt,
                        retryable=exc.retryable,
                        error=str(exc),
                    )
                    raise _RetriesExhausted(exc, attempt) from exc
                delay = min(cfg.backoff_max_seconds, cfg.backoff_base_seconds * (2 ** (attempt - 1)))
                self._retries += 1
                logger.warning(
                    "embedding_call_retry",
                    provider=provider_name,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(exc),
                )
                await self._sleep(delay)
