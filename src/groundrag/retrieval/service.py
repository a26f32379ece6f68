"""Similarity retrieval with an adaptive relevance threshold."""

from __future__ import annotations

import time
from dataclasses import dataclass, replace
from typing import Any, Mapping, Sequence, Tuple

from groundrag.embeddings import EmbeddingBackend, VectorIndex
from groundrag.metrics.observability import PipelineMetrics, get_logger
from groundrag.models import RelevanceDecision, RetrievedItem

ELLIPSIS = "..."


@dataclass(frozen=True)
class RelevancePolicy:
    """Thresholds and budget for usable context."""

    min_score: float = 0.35
    score_floor: float = 0.25
    step_down: float = 0.05
    context_limit: int = 5


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for one retriever (one collection)."""

    collection: str
    search_limit: int = 10
    policy: RelevancePolicy = RelevancePolicy()
    truncate_fields: Tuple[str, ...] = ()
    field_char_limit: int = 500


def apply_relevance_threshold(
    candidates: Sequence[RetrievedItem],
    policy: RelevancePolicy | None = None,
) -> RelevanceDecision:
    """Filter ``candidates`` by score, lowering the threshold at most once.

    When nothing reaches ``min_score`` but the best score is at least
    ``score_floor``, one retry runs at ``max(score_floor, best - step_down)``.
    """

    policy = policy or RelevancePolicy()
    ranked = sorted(candidates, key=lambda item: item.score, reverse=True)
    best = ranked[0].score if ranked else 0.0
    threshold = policy.min_score
    survivors = [item for item in ranked if item.score >= threshold]
    relaxed = False
    if not survivors and ranked and best >= policy.score_floor:
        # rounded so that e.g. 0.33 - 0.05 keeps an item scored exactly 0.28
        threshold = round(max(policy.score_floor, best - policy.step_down), 6)
        survivors = [item for item in ranked if item.score >= threshold]
        relaxed = True
    if not survivors:
        return RelevanceDecision(
            items=(),
            max_score=best,
            used_threshold=policy.min_score,
            candidate_count=len(ranked),
        )
    return RelevanceDecision(
        items=tuple(survivors[: policy.context_limit]),
        max_score=best,
        used_threshold=threshold,
        candidate_count=len(ranked),
        relaxed=relaxed,
    )


def truncate_text(text: str, limit: int) -> str:
    if limit <= 0 or len(text) <= limit:
        return text
    return text[:limit] + ELLIPSIS


def truncate_payload(payload: Mapping[str, Any], fields: Sequence[str], limit: int) -> dict[str, Any]:
    truncated = dict(payload)
    for key in fields:
        value = truncated.get(key)
        if isinstance(value, str):
            truncated[key] = truncate_text(value, limit)
    return truncated


class AdaptiveRetriever:
    """Embed a query, search one collection and keep only relevant items."""

    def __init__(self, index: VectorIndex, embedder: EmbeddingBackend, config: RetrievalConfig) -> None:
        self._index = index
        self._embedder = embedder
        self._config = config
        self._logger = get_logger("retrieval")

    @property
    def config(self) -> RetrievalConfig:
        return self._config

    def retrieve(self, query: str, *, filters: Mapping[str, Any] | None = None) -> RelevanceDecision:
        start = time.perf_counter()
        embedding = self._embedder.embed_text(query)
        candidates = self._index.search(
            self._config.collection,
            embedding.vector,
            limit=self._config.search_limit,
            filters=filters,
        )
        decision = apply_relevance_threshold(candidates, self._config.policy)
        items = tuple(
            replace(
                item,
                payload=truncate_payload(item.payload, self._config.truncate_fields, self._config.field_char_limit),
            )
            for item in decision.items
        )
        decision = replace(decision, items=items, usage=embedding.usage)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_retrieval(
            duration,
            len(items),
            (item.score for item in items),
            relaxed=decision.relaxed,
        )
        self._logger.info(
            "retrieval.complete",
            collection=self._config.collection,
            candidate_count=decision.candidate_count,
            item_count=len(items),
            max_score=decision.max_score,
            used_threshold=decision.used_threshold,
            relaxed=decision.relaxed,
            duration_seconds=duration,
        )
        return decision
