"""Observability helpers for groundrag."""

from __future__ import annotations

import logging
import time
from contextvars import ContextVar
from typing import Iterable

import structlog
from prometheus_client import Counter, Histogram

_logger_configured = False
_correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="-")


def configure_logging(level: int = logging.INFO) -> None:
    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured:
        return
    logging.basicConfig(level=level, format="%(message)s")
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)
    _correlation_id_var.set(correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()
    _correlation_id_var.set("-")


def get_correlation_id() -> str:
    return _correlation_id_var.get()


def get_logger(name: str = "groundrag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "groundrag_ingestion_duration_seconds",
        "Time spent ingesting one page or specification.",
        ["kind"],
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
    )
    ingestion_units = Histogram(
        "groundrag_ingestion_unit_count",
        "Chunks or endpoints stored per ingestion unit.",
        ["kind"],
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    ingestion_failures = Counter(
        "groundrag_ingestion_failures_total",
        "Ingestion units skipped after an error.",
        ["kind"],
    )
    retrieval_latency = Histogram(
        "groundrag_retrieval_duration_seconds",
        "Time spent retrieving context items.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_item_count = Histogram(
        "groundrag_retrieved_item_count",
        "Number of items surviving the relevance threshold.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    grounding_score = Histogram(
        "groundrag_grounding_score",
        "Similarity score of items used as context.",
        buckets=(0.0, 0.25, 0.35, 0.5, 0.75, 1.0),
    )
    threshold_relaxations = Counter(
        "groundrag_threshold_relaxations_total",
        "Queries answered after lowering the relevance threshold.",
    )
    no_relevant_results = Counter(
        "groundrag_no_relevant_results_total",
        "Queries ending without any relevant context.",
    )
    generation_latency = Histogram(
        "groundrag_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0),
    )
    rewrite_fallbacks = Counter(
        "groundrag_rewrite_fallbacks_total",
        "Query rewrites that fell back to the original question.",
    )
    citation_fallbacks = Counter(
        "groundrag_citation_fallbacks_total",
        "Answers without detectable citations.",
    )
    token_usage = Counter(
        "groundrag_tokens_total",
        "Model tokens consumed.",
        ["kind"],
    )

    @classmethod
    def observe_ingestion(cls, kind: str, duration_seconds: float, unit_count: int) -> None:
        cls.ingestion_latency.labels(kind=kind).observe(duration_seconds)
        cls.ingestion_units.labels(kind=kind).observe(unit_count)

    @classmethod
    def observe_ingestion_failure(cls, kind: str) -> None:
        cls.ingestion_failures.labels(kind=kind).inc()

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        item_count: int,
        scores: Iterable[float],
        *,
        relaxed: bool = False,
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_item_count.observe(item_count)
        for score in scores:
            cls.grounding_score.observe(_clamp_score(score))
        if relaxed:
            cls.threshold_relaxations.inc()
        if item_count == 0:
            cls.no_relevant_results.inc()

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def observe_tokens(cls, prompt_tokens: int, completion_tokens: int) -> None:
        if prompt_tokens:
            cls.token_usage.labels(kind="prompt").inc(prompt_tokens)
        if completion_tokens:
            cls.token_usage.labels(kind="completion").inc(completion_tokens)


class TimedSection:
    """Context manager capturing elapsed time for metrics."""

    def __init__(self, callback) -> None:
        self._callback = callback
        self._start = 0.0
        self.duration = 0.0

    def __enter__(self) -> "TimedSection":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # noqa: D401
        self.duration = time.perf_counter() - self._start
        self._callback(self.duration)


__all__ = [
    "PipelineMetrics",
    "TimedSection",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_correlation_id",
    "get_logger",
]
