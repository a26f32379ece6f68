"""Retrieval components."""

from .rewriter import QueryRewriter, RewriteResult
from .service import AdaptiveRetriever, RelevancePolicy, RetrievalConfig, apply_relevance_threshold

__all__ = [
    "AdaptiveRetriever",
    "QueryRewriter",
    "RelevancePolicy",
    "RetrievalConfig",
    "RewriteResult",
    "apply_relevance_threshold",
]
