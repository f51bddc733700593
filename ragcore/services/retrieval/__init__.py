from ragcore.services.retrieval.contextual_retriever import (
    AdvancedContextualRetriever,
    reorder_for_long_context,
)
from ragcore.services.retrieval.query_classifier import (
    classify_query,
    decompose_query,
    is_system_query,
    select_strategy,
)

__all__ = [
    "AdvancedContextualRetriever",
    "classify_query",
    "decompose_query",
    "is_system_query",
    "reorder_for_long_context",
    "select_strategy",
]
