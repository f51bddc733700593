"""Pure query classification and strategy selection.

No I/O happens here: the same query and config always produce the same
:class:`~ragcore.models.retrieval.QueryProfile` and strategy, which keeps
retrieval deterministic and makes the routing trivially testable.

Routing table:

    query kind                         strategy
    ---------------------------------  ------------------------------------
    multi-hop (compare / relationship  contextual: per sub-query retrieval,
      / several questions)               always expanded by hierarchy
    broad (overview / summarize /      multi-scale: every configured
      explain / walk me through)         embedding type, unioned
    single fact with exact terms       hybrid: vector + keyword overlap
      (quotes, numbers, codes)
    any other single fact              vector-only on content embeddings
"""

from __future__ import annotations

import re

from ragcore.models.retrieval import (
    ContextualStrategy,
    HybridStrategy,
    MultiScaleStrategy,
    QueryKind,
    QueryProfile,
    RetrievalConfig,
    RetrievalStrategy,
    StrategyName,
    VectorOnlyStrategy,
)
from ragcore.utils.text import extract_keywords, normalize_text

_SYSTEM_QUERY_RE = re.compile(
    r"^\s*(?:ping|test)\s*[.!?]*\s*$"
    r"|\b(?:health check|health test|system status|status check|service test)\b",
    re.IGNORECASE,
)

_COMPARISON_RE = re.compile(
    r"\b(?:compare|comparison|versus|vs\.?|contrast)\b"
    r"|\b(?:differences?|relationship|similarities) between\b",
    re.IGNORECASE,
)
_BETWEEN_RE = re.compile(
    r"\b(?:differences?|relationship|similarities) between (.+?) and (.+?)[?.!]*$",
    re.IGNORECASE,
)
_COMPARE_RE = re.compile(r"\bcompare (.+?) (?:and|with|to) (.+?)[?.!]*$", re.IGNORECASE)
_VERSUS_RE = re.compile(r"^(.+?)\s+(?:versus|vs\.?)\s+(.+?)[?.!]*$", re.IGNORECASE)
_CHAINED_QUESTION_RE = re.compile(
    r"\s*[,;]?\s+(?:and|also|then)\s+(?=(?:how|what|why|when|where|which|who)\b)",
    re.IGNORECASE,
)
_BROAD_RE = re.compile(
    r"\b(?:overview|summari[sz]e|summary|explain|describe|tell me about|walk me through"
    r"|everything about|what are all)\b",
    re.IGNORECASE,
)
_EXACT_TERM_RE = re.compile(
    r"\"[^\"]+\"|'[^']+'"          # quoted phrases
    r"|\b\d[\d.,/%-]*\b"           # numbers, dates, percentages
    r"|\b[A-Z]{2,}[A-Z0-9-]*\b"    # acronyms and codes (NAV, ETF, ISIN-1)
    r"|\b\w+_\w+\b"                # snake_case identifiers
)


def is_system_query(query: str) -> bool:
    """Return ``True`` for health-check style queries that must not hit the store."""
    return bool(_SYSTEM_QUERY_RE.search(query or ""))


def decompose_query(query: str, max_sub_queries: int = 4) -> list[str]:
    """Split a multi-hop query into sub-queries.

    The original query is always the first sub-query, so the union of
    per-sub-query results never loses what a single retrieval would find.
    """
    query = normalize_text(query)
    parts: list[str] = []

    for pattern in (_BETWEEN_RE, _COMPARE_RE, _VERSUS_RE):
        match = pattern.search(query)
        if match:
            parts.extend(match.groups())
            break

    if not parts:
        questions = [q.strip() for q in re.split(r"(?<=\?)\s+", query) if q.strip()]
        for question in questions:
            parts.extend(p.strip() for p in _CHAINED_QUESTION_RE.split(question) if p.strip())

    seen: dict[str, None] = {query.lower(): None}
    subs = [query]
    for part in parts:
        part = part.strip(" ,;?.!")
        if part and part.lower() not in seen:
            seen[part.lower()] = None
            subs.append(part)
    return subs[:max_sub_queries]


def classify_query(query: str, max_sub_queries: int = 4) -> QueryProfile:
    """Classify *query* as single-fact, multi-hop or broad."""
    text = normalize_text(query)
    keywords = extract_keywords(text, limit=10)
    has_exact = bool(_EXACT_TERM_RE.search(text))

    multi_question = text.count("?") > 1 or bool(_CHAINED_QUESTION_RE.search(text))
    if _COMPARISON_RE.search(text) or multi_question:
        subs = decompose_query(text, max_sub_queries)
        return QueryProfile(
            query=text,
            kind=QueryKind.MULTI_HOP,
            sub_queries=subs,
            keywords=keywords,
            has_exact_terms=has_exact,
        )

    kind = QueryKind.BROAD if _BROAD_RE.search(text) else QueryKind.SINGLE_FACT
    return QueryProfile(
        query=text,
        kind=kind,
        sub_queries=[text],
        keywords=keywords,
        has_exact_terms=has_exact,
    )


def strategy_for_name(name: StrategyName, config: RetrievalConfig) -> RetrievalStrategy:
    match StrategyName(name):
        case StrategyName.VECTOR_ONLY:
            return VectorOnlyStrategy()
        case StrategyName.HYBRID:
            return HybridStrategy()
        case StrategyName.MULTI_SCALE:
            return MultiScaleStrategy(embedding_types=list(config.embedding_types))
        case StrategyName.CONTEXTUAL:
            return ContextualStrategy()


def select_strategy(profile: QueryProfile, config: RetrievalConfig) -> RetrievalStrategy:
    """Pick the retrieval strategy for *profile*; ``config.retrieval_strategy`` wins."""
    if config.retrieval_strategy is not None:
        return strategy_for_name(config.retrieval_strategy, config)
    if profile.kind is QueryKind.MULTI_HOP:
        return ContextualStrategy()
    if profile.kind is QueryKind.BROAD:
        return MultiScaleStrategy(embedding_types=list(config.embedding_types))
    if profile.has_exact_terms:
        return HybridStrategy()
    return VectorOnlyStrategy()
