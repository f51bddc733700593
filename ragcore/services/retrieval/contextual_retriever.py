"""Query-adaptive retrieval over the multi-scale chunk store.

Pipeline per query:

    classify -> select strategy -> per sub-query candidate search
      -> union by chunk_id (max score) -> rank -> redundancy filter
      -> truncate -> context expansion -> lost-in-the-middle ordering

─── RANKING ──────────────────────────────────────────────────────────

Candidates are sorted by descending score, ties broken on
``(source_id, sequence_order, chunk_id)``.  Nothing random is involved:
the same store contents and query always yield the same result.

─── CONTEXT EXPANSION ────────────────────────────────────────────────

At most ``expansion_max_count`` extra chunks are added, walking primary
matches in rank order.  Expanded entries inherit a damped score:

    parent (hierarchical)                       primary score x 0.8
    sibling above similarity threshold          primary score x 0.7
    adjacent chunk, same source and scale       primary score x 0.6

─── LOST IN THE MIDDLE ───────────────────────────────────────────────

LLMs attend best to the start and end of a long context.  The ranked
list is dealt alternately to the front and the back, so rank 1 is first,
rank 2 is last, rank 3 second, and the weakest entries meet in the middle.

Store failures and timeouts raise :class:`StoreUnavailableError`; they are
never turned into an empty result.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from collections.abc import Awaitable
from typing import Any, TypeVar

import numpy as np
import structlog

from ragcore.interfaces.vector_store_provider import IVectorStoreProvider
from ragcore.models.chunk import Chunk, EmbeddingType
from ragcore.models.retrieval import (
    ContextualStrategy,
    ExpansionReason,
    HybridStrategy,
    MultiScaleStrategy,
    QueryKind,
    RetrievalConfig,
    RetrievalResult,
    RetrievalStrategy,
    RetrievedContext,
    ScoredChunk,
    StrategyName,
    VectorOnlyStrategy,
)
from ragcore.services.embedding.multi_scale_generator import MultiScaleEmbeddingGenerator
from ragcore.services.retrieval.query_classifier import (
    classify_query,
    is_system_query,
    select_strategy,
)
from ragcore.utils.concurrency import with_timeout
from ragcore.utils.errors import StoreUnavailableError, ValidationError
from ragcore.utils.text import extract_keywords, text_similarity

logger = structlog.get_logger(logger_name=__name__)

_T = TypeVar("_T")

PARENT_FACTOR = 0.8
SIBLING_FACTOR = 0.7
TEMPORAL_FACTOR = 0.6


def rank_key(item: ScoredChunk | RetrievedContext) -> tuple[float, str, int, str]:
    score = item.score if isinstance(item, ScoredChunk) else item.relevance_score
    chunk = item.chunk
    return (-score, chunk.source_id, chunk.sequence_order, chunk.chunk_id)


def reorder_for_long_context(items: list[_T]) -> list[_T]:
    """Deal ranked *items* alternately to the front and back of the list."""
    front: list[_T] = []
    back: list[_T] = []
    for index, item in enumerate(items):
        (front if index % 2 == 0 else back).append(item)
    return front + back[::-1]


def _cosine(a: list[float], b: list[float]) -> float:
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.clip(va @ vb / denom, 0.0, 1.0))


class AdvancedContextualRetriever:
    """Retrieves an ordered, expanded context set for a query.

    Parameters
    ----------
    store:
        Vector store holding embedded chunks.
    generator:
        Used to embed queries through the shared cache and rate limiter.
    config:
        Default retrieval parameters; ``retrieve`` accepts a per-call override.
    """

    def __init__(
        self,
        store: IVectorStoreProvider,
        generator: MultiScaleEmbeddingGenerator,
        config: RetrievalConfig | None = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._config = config or RetrievalConfig()

        self._queries_by_strategy: Counter[str] = Counter()
        self._system_queries = 0
        self._failed_queries = 0
        self._total_latency_ms = 0.0

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def retrieve(self, query: str, config: RetrievalConfig | None = None) -> RetrievalResult:
        """Return the context set for *query*.

        Raises
        ------
        ValidationError
            If *query* is empty or whitespace.
        StoreUnavailableError
            If the vector store fails or does not answer in time.
        ProviderError
            If the query cannot be embedded.
        """
        cfg = config or self._config
        if query is None or not query.strip():
            raise ValidationError("Query must be a non-empty string")

        started = time.perf_counter()
        if is_system_query(query):
            self._system_queries += 1
            logger.info("retrieval_system_query_bypassed", query=query)
            return RetrievalResult(
                query=query.strip(),
                strategy=StrategyName.VECTOR_ONLY,
                query_kind=QueryKind.SINGLE_FACT,
                system_query=True,
            )

        profile = classify_query(query, cfg.max_sub_queries)
        strategy = select_strategy(profile, cfg)
        top_k = cfg.max_retrieved_chunks * cfg.candidate_multiplier

        try:
            merged: dict[str, ScoredChunk] = {}
            for sub_query in profile.sub_queries or [profile.query]:
                for scored in await self._candidates(sub_query, strategy, top_k, cfg):
                    current = merged.get(scored.chunk.chunk_id)
                    if current is None or scored.score > current.score:
                        merged[scored.chunk.chunk_id] = scored

            ranked = sorted(merged.values(), key=rank_key)
            selected = self._reduce_redundancy(ranked, cfg.dedup_threshold)[: cfg.max_retrieved_chunks]

            items = [
                RetrievedContext(chunk=s.chunk, relevance_score=s.score) for s in selected
            ]
            items.extend(
                await self._expand(selected, cfg, hierarchical_only=isinstance(strategy, ContextualStrategy))
            )
        except Exception:
            self._failed_queries += 1
            raise

        items.sort(key=rank_key)
        if cfg.reorder_for_long_context:
            items = reorder_for_long_context(items)

        elapsed_ms = (time.perf_counter() - started) * 1000
        self._queries_by_strategy[strategy.kind] += 1
        self._total_latency_ms += elapsed_ms

        logger.info(
            "retrieval_complete",
            query_kind=profile.kind.value,
            strategy=strategy.kind,
            sub_queries=len(profile.sub_queries),
            candidates=len(merged),
            returned=len(items),
            elapsed_ms=round(elapsed_ms, 2),
        )
        return RetrievalResult(
            query=profile.query,
            strategy=StrategyName(strategy.kind),
            query_kind=profile.kind,
            sub_queries=list(profile.sub_queries),
            items=items,
            elapsed_ms=elapsed_ms,
        )

    def get_stats(self) -> dict[str, Any]:
        total = sum(self._queries_by_strategy.values())
        return {
            "total_queries": total,
            "queries_by_strategy": dict(self._queries_by_strategy),
            "system_queries": self._system_queries,
            "failed_queries": self._failed_queries,
            "mean_latency_ms": round(self._total_latency_ms / total, 2) if total else 0.0,
        }

    # ------------------------------------------------------------------
    # Candidate search
    # ------------------------------------------------------------------

    async def _store_call(self, awaitable: Awaitable[_T], cfg: RetrievalConfig) -> _T:
        provider = self._store.get_provider_name()
        return await with_timeout(
            awaitable,
            cfg.store_timeout_seconds,
            lambda: StoreUnavailableError(
                message=f"Vector store did not answer within {cfg.store_timeout_seconds}s",
                provider_name=provider,
            ),
        )

    async def _vector_search(
        self,
        query: str,
        embedding_type: EmbeddingType,
        top_k: int,
        cfg: RetrievalConfig,
    ) -> list[ScoredChunk]:
        vector = await self._generator.embed_query(query, embedding_type)
        filters = None if cfg.filters.is_empty() else cfg.filters
        return await self._store_call(
            self._store.query(embedding_type, vector, top_k=top_k, filters=filters), cfg
        )

    async def _candidates(
        self,
        query: str,
        strategy: RetrievalStrategy,
        top_k: int,
        cfg: RetrievalConfig,
    ) -> list[ScoredChunk]:
        match strategy:
            case VectorOnlyStrategy(embedding_type=embedding_type) | ContextualStrategy(
                embedding_type=embedding_type
            ):
                return await self._vector_search(query, embedding_type, top_k, cfg)

            case HybridStrategy():
                vector_hits = await self._vector_search(query, strategy.embedding_type, top_k, cfg)
                terms = extract_keywords(query, limit=10)
                filters = None if cfg.filters.is_empty() else cfg.filters
                keyword_hits = await self._store_call(
                    self._store.keyword_search(terms, top_k=top_k, filters=filters), cfg
                )
                chunks: dict[str, Chunk] = {}
                vector_scores: dict[str, float] = {}
                keyword_scores: dict[str, float] = {}
                for hit in vector_hits:
                    chunks[hit.chunk.chunk_id] = hit.chunk
                    vector_scores[hit.chunk.chunk_id] = hit.score
                for hit in keyword_hits:
                    chunks.setdefault(hit.chunk.chunk_id, hit.chunk)
                    keyword_scores[hit.chunk.chunk_id] = hit.score
                return [
                    ScoredChunk(
                        chunk=chunk,
                        score=min(
                            1.0,
                            strategy.vector_weight * vector_scores.get(cid, 0.0)
                            + strategy.keyword_weight * keyword_scores.get(cid, 0.0),
                        ),
                    )
                    for cid, chunk in chunks.items()
                ]

            case MultiScaleStrategy():
                allowed = set(cfg.embedding_types)
                types = [t for t in strategy.embedding_types if t in allowed] or [EmbeddingType.CONTENT]
                per_type = await asyncio.gather(
                    *(self._vector_search(query, t, top_k, cfg) for t in types)
                )
                best: dict[str, ScoredChunk] = {}
                for hits in per_type:
                    for hit in hits:
                        current = best.get(hit.chunk.chunk_id)
                        if current is None or hit.score > current.score:
                            best[hit.chunk.chunk_id] = hit
                return list(best.values())

        raise ValidationError(f"Unknown retrieval strategy: {strategy!r}")

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    @staticmethod
    def _reduce_redundancy(ranked: list[ScoredChunk], threshold: float) -> list[ScoredChunk]:
        """Drop candidates too similar to a higher-ranked, already kept one."""
        kept: list[ScoredChunk] = []
        for candidate in ranked:
            if any(
                text_similarity(candidate.chunk.content, k.chunk.content) > threshold for k in kept
            ):
                logger.debug("retrieval_redundant_dropped", chunk_id=candidate.chunk.chunk_id)
                continue
            kept.append(candidate)
        return kept

    @staticmethod
    def _chunk_similarity(a: Chunk, b: Chunk) -> float:
        va = a.embeddings.get(EmbeddingType.CONTENT)
        vb = b.embeddings.get(EmbeddingType.CONTENT)
        if va and vb:
            return _cosine(va, vb)
        return text_similarity(a.content, b.content)

    async def _expand(
        self,
        selected: list[ScoredChunk],
        cfg: RetrievalConfig,
        hierarchical_only: bool = False,
    ) -> list[RetrievedContext]:
        """Collect parent, sibling and adjacent chunks of the primary matches.

        The contextual strategy always expands by hierarchy, regardless of
        the ``expand_*`` flags, and only by hierarchy.
        """
        budget = cfg.expansion_max_count
        if budget == 0 or not selected:
            return []

        use_parent = cfg.expand_hierarchical or hierarchical_only
        use_siblings = cfg.expand_semantic and not hierarchical_only
        use_temporal = cfg.expand_temporal and not hierarchical_only

        seen = {s.chunk.chunk_id for s in selected}
        expanded: list[RetrievedContext] = []

        def add(chunk: Chunk, score: float, reason: ExpansionReason, origin: str) -> None:
            if len(expanded) < budget and chunk.chunk_id not in seen:
                seen.add(chunk.chunk_id)
                expanded.append(
                    RetrievedContext(
                        chunk=chunk,
                        relevance_score=min(1.0, max(0.0, score)),
                        expansion_reason=reason,
                        expanded_from=origin,
                    )
                )

        for primary in selected:
            if len(expanded) >= budget:
                break
            chunk = primary.chunk

            if use_parent and chunk.parent_chunk_id and chunk.parent_chunk_id not in seen:
                for parent in await self._store_call(
                    self._store.get_chunks([chunk.parent_chunk_id]), cfg
                ):
                    add(parent, primary.score * PARENT_FACTOR, ExpansionReason.HIERARCHICAL, chunk.chunk_id)

            if use_siblings:
                wanted = [sid for sid in chunk.sibling_chunk_ids if sid not in seen]
                if wanted:
                    siblings = await self._store_call(self._store.get_chunks(wanted), cfg)
                    for sibling in sorted(siblings, key=lambda c: (c.sequence_order, c.chunk_id)):
                        if self._chunk_similarity(chunk, sibling) >= cfg.sibling_similarity_threshold:
                            add(sibling, primary.score * SIBLING_FACTOR, ExpansionReason.SEMANTIC, chunk.chunk_id)

            if use_temporal:
                same_scale = [
                    c
                    for c in await self._store_call(self._store.get_source_chunks(chunk.source_id), cfg)
                    if c.scale_type == chunk.scale_type
                ]
                same_scale.sort(key=lambda c: (c.sequence_order, c.chunk_id))
                positions = {c.chunk_id: i for i, c in enumerate(same_scale)}
                index = positions.get(chunk.chunk_id)
                if index is not None:
                    for neighbour in (index - 1, index + 1):
                        if 0 <= neighbour < len(same_scale):
                            add(
                                same_scale[neighbour],
                                primary.score * TEMPORAL_FACTOR,
                                ExpansionReason.TEMPORAL,
                                chunk.chunk_id,
                            )

        if expanded:
            logger.debug(
                "retrieval_context_expanded",
                expanded=len(expanded),
                reasons=dict(Counter(e.expansion_reason.value for e in expanded)),
            )
        return expanded
