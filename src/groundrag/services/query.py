"""Query orchestration combining rewriting, retrieval, generation and citations."""

from __future__ import annotations

from typing import Any, Dict, Mapping, Protocol, Sequence

from groundrag.embeddings import EmbeddingError, VectorIndexError
from groundrag.metrics.observability import PipelineMetrics, TimedSection, get_logger
from groundrag.models import API_DOCUMENT_TYPE, ConversationTurn, RetrievedItem, TokenUsage
from groundrag.retrieval.rewriter import QueryRewriter
from groundrag.retrieval.service import AdaptiveRetriever, truncate_text
from groundrag.schemas import ApiSourceModel, DocumentSourceModel, QueryResponse, SourceModel, UsageModel
from groundrag.services.citations import CitationExtractor
from groundrag.services.generation import AnswerGenerator, GenerationError

PREVIEW_CHARS = 200


class UsageRecorder(Protocol):
    """Receives token usage of each answered query."""

    def record(self, usage: TokenUsage, *, kind: str) -> None:
        ...


class PrometheusUsageRecorder:
    def record(self, usage: TokenUsage, *, kind: str) -> None:
        PipelineMetrics.observe_tokens(usage.prompt_tokens, usage.completion_tokens)


class QueryService:
    """Answer questions from one indexed corpus.

    Subclasses decide how the caller's filter key maps onto payload filters
    and how a cited item is presented as a source.
    """

    kind = "documents"
    no_information_message = "The provided documents do not contain sufficiently relevant information for this question."
    failure_message = "An error occurred while generating the answer."

    def __init__(
        self,
        rewriter: QueryRewriter,
        retriever: AdaptiveRetriever,
        generator: AnswerGenerator,
        citations: CitationExtractor,
        *,
        usage_recorder: UsageRecorder | None = None,
    ) -> None:
        self._rewriter = rewriter
        self._retriever = retriever
        self._generator = generator
        self._citations = citations
        self._usage_recorder = usage_recorder or PrometheusUsageRecorder()
        self._logger = get_logger("query")

    def filters(self, filter_key: str | None) -> Dict[str, Any] | None:
        return None

    def to_source(self, item: RetrievedItem) -> SourceModel:
        raise NotImplementedError

    def answer(
        self,
        question: str,
        *,
        history: Sequence[ConversationTurn] | None = None,
        filter_key: str | None = None,
    ) -> QueryResponse:
        rewrite = self._rewriter.rewrite(question, history)
        usage = rewrite.usage
        self._logger.info("query.rewritten", question=question, rewritten_query=rewrite.query)
        try:
            decision = self._retriever.retrieve(rewrite.query, filters=self.filters(filter_key))
            usage = usage + decision.usage
            if not decision.found:
                self._logger.warning(
                    "query.no_relevant_result",
                    max_score=decision.max_score,
                    threshold=decision.used_threshold,
                )
                return QueryResponse(
                    success=False,
                    answer=self.no_information_message,
                    sources=[],
                    question=question,
                    rewritten_query=rewrite.query,
                    max_score=decision.max_score,
                    threshold=decision.used_threshold,
                )
            with TimedSection(PipelineMetrics.observe_generation) as timer:
                generated = self._generator.generate(question, decision.items, history)
            usage = usage + generated.usage
        except (EmbeddingError, VectorIndexError, GenerationError) as exc:
            self._logger.error("query.failed", question=question, detail=str(exc))
            return QueryResponse(
                success=False,
                answer=self.failure_message,
                sources=[],
                question=question,
                rewritten_query=rewrite.query,
                error=str(exc),
            )

        cited, citation_set = self._citations.select(generated.text, decision.items)
        self._usage_recorder.record(usage, kind=self.kind)
        self._logger.info(
            "generation.complete",
            question=question,
            duration_seconds=timer.duration,
            context_size=len(decision.items),
            cited=len(cited),
            fallback_sources=citation_set.fallback,
            total_tokens=usage.total_tokens,
        )
        return QueryResponse(
            success=True,
            answer=generated.text,
            sources=[self.to_source(item) for item in cited],
            question=question,
            rewritten_query=rewrite.query,
            usage=UsageModel.from_usage(usage),
            fallback_sources=citation_set.fallback,
        )


class DocumentQueryService(QueryService):
    """Questions over ingested documentation pages."""

    kind = "documents"

    def filters(self, filter_key: str | None) -> Dict[str, Any] | None:
        return {"source_id": filter_key} if filter_key else None

    def to_source(self, item: RetrievedItem) -> DocumentSourceModel:
        payload = item.payload
        return DocumentSourceModel(
            page_title=str(payload.get("source_title") or "Unknown"),
            page_url=str(payload.get("source_url") or ""),
            score=item.score,
            chunk_text=truncate_text(str(payload.get("text") or ""), PREVIEW_CHARS),
        )


class ApiQueryService(QueryService):
    """Questions over indexed API endpoints."""

    kind = "api"
    no_information_message = (
        "The provided API documentation does not contain sufficiently relevant information for this question."
    )
    failure_message = "An error occurred while generating the API answer."

    def filters(self, filter_key: str | None) -> Dict[str, Any] | None:
        filters: Dict[str, Any] = {"document_type": API_DOCUMENT_TYPE}
        if filter_key:
            filters["document_key"] = filter_key
        return filters

    def to_source(self, item: RetrievedItem) -> ApiSourceModel:
        payload: Mapping[str, Any] = item.payload
        method = str(payload.get("method") or "")
        path = str(payload.get("path") or "")
        return ApiSourceModel(
            endpoint=str(payload.get("endpoint") or f"{method} {path}".strip()),
            method=method,
            path=path,
            score=item.score,
            document_key=payload.get("document_key"),
        )