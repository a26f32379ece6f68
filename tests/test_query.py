from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping
from uuid import uuid4

import chromadb

from groundrag.embeddings.service import EmbeddingConfig, EmbeddingError, EmbeddingResult, HashEmbeddingBackend
from groundrag.embeddings.store import ChromaVectorIndex
from groundrag.ingestion import ApiSpecIngestionService, InMemoryApiDocumentRegistry
from groundrag.models import ConversationTurn, RetrievedItem, TokenUsage
from groundrag.retrieval import AdaptiveRetriever, QueryRewriter, RetrievalConfig
from groundrag.services.citations import CitationExtractor, EntitySubstringStrategy, IndexMarkerStrategy
from groundrag.services.generation import GeneratedAnswer, GenerationError, TemplateAnswerGenerator
from groundrag.services.query import ApiQueryService, DocumentQueryService

FIXTURE = Path(__file__).parent / "fixtures" / "petstore.json"


class _StubEmbedder:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.texts: list[str] = []

    def embed_text(self, text: str) -> EmbeddingResult:
        self.texts.append(text)
        if self.fail:
            raise EmbeddingError("embedding service unavailable")
        return EmbeddingResult(vector=(1.0, 0.0), usage=TokenUsage(prompt_tokens=3, total_tokens=3))


class _StubIndex:
    def __init__(self, items) -> None:
        self.items = list(items)
        self.filters: list[Mapping[str, Any] | None] = []

    def search(self, collection, vector, *, limit, filters=None):
        self.filters.append(filters)
        return self.items[:limit]


class _FixedGenerator:
    def __init__(self, text: str = "", *, error: Exception | None = None) -> None:
        self.text = text
        self.error = error
        self.calls: list[tuple] = []

    def generate(self, question, items, history=None) -> GeneratedAnswer:
        self.calls.append((question, tuple(items), history))
        if self.error is not None:
            raise self.error
        return GeneratedAnswer(text=self.text, usage=TokenUsage(prompt_tokens=50, completion_tokens=10, total_tokens=60))


class _FailingChat:
    def complete(self, messages, *, model=None, temperature=0.3, max_tokens=512):
        raise GenerationError("chat backend down")


class _RecordingUsage:
    def __init__(self) -> None:
        self.records: list[tuple[TokenUsage, str]] = []

    def record(self, usage: TokenUsage, *, kind: str) -> None:
        self.records.append((usage, kind))


def _pages(*scores: float) -> list[RetrievedItem]:
    return [
        RetrievedItem(
            item_id=f"c{n}",
            score=score,
            payload={"text": "t" * 300, "source_id": f"p{n}", "source_title": f"Page {n}", "source_url": f"https://notion.test/{n}"},
        )
        for n, score in enumerate(scores)
    ]


def _document_service(index, generator, *, embedder=None, usage=None, rewriter=None) -> DocumentQueryService:
    return DocumentQueryService(
        rewriter or QueryRewriter(),
        AdaptiveRetriever(index, embedder or _StubEmbedder(), RetrievalConfig(collection="pages")),
        generator,
        CitationExtractor(IndexMarkerStrategy()),
        usage_recorder=usage or _RecordingUsage(),
    )


def test_answer_returns_only_cited_sources():
    usage = _RecordingUsage()
    generator = _FixedGenerator("Install it first [Document 2].")
    service = _document_service(_StubIndex(_pages(0.9, 0.8, 0.7)), generator, usage=usage)
    response = service.answer("how do I install?", filter_key="p1")
    assert response.success
    assert [source.page_title for source in response.sources] == ["Page 1"]
    assert response.sources[0].chunk_text == "t" * 200 + "..."
    assert response.fallback_sources is False
    assert response.usage.total_tokens == 63
    assert usage.records[0][1] == "documents"


def test_filter_key_restricts_page_source():
    index = _StubIndex(_pages(0.9))
    _document_service(index, _FixedGenerator("[Document 1]")).answer("q", filter_key="p7")
    assert index.filters == [{"source_id": "p7"}]


def test_uncited_answer_returns_flagged_fallback_sources():
    service = _document_service(_StubIndex(_pages(0.5, 0.9, 0.6, 0.7)), _FixedGenerator("No markers here."))
    payload = service.answer("q").to_payload()
    assert payload["fallbackSources"] is True
    assert [source["score"] for source in payload["sources"]] == [0.9, 0.7, 0.6]


def test_low_scores_skip_generation():
    generator = _FixedGenerator("unused")
    response = _document_service(_StubIndex(_pages(0.10)), generator).answer("q")
    assert not response.success
    assert response.sources == []
    assert response.max_score == 0.10
    assert response.threshold == 0.35
    assert generator.calls == []


def test_embedding_failure_is_reported_not_raised():
    response = _document_service(_StubIndex(_pages(0.9)), _FixedGenerator("x"), embedder=_StubEmbedder(fail=True)).answer("q")
    assert not response.success
    assert response.error == "embedding service unavailable"
    assert response.sources == []


def test_generation_failure_is_reported_not_raised():
    response = _document_service(_StubIndex(_pages(0.9)), _FixedGenerator(error=GenerationError("timeout"))).answer("q")
    assert not response.success
    assert response.answer == DocumentQueryService.failure_message


def test_history_reaches_the_generator():
    generator = _FixedGenerator("[Document 1]")
    history = [ConversationTurn(role="user", content="earlier")]
    _document_service(_StubIndex(_pages(0.9)), generator).answer("q", history=history)
    assert generator.calls[0][2] == history


def test_api_query_end_to_end_with_chroma():
    index = ChromaVectorIndex(client=chromadb.EphemeralClient())
    embedder = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    collection = f"api-{uuid4().hex[:12]}"
    ingestion = ApiSpecIngestionService(embedder, index, InMemoryApiDocumentRegistry(), collection=collection)
    ingestion.upload("shop", json.loads(FIXTURE.read_text(encoding="utf-8")))
    ingestion.upload("other", {"openapi": "3.0.0", "info": {"title": "Other"}, "paths": {"/ping": {"get": {"summary": "Ping"}}}})

    service = ApiQueryService(
        QueryRewriter(),
        AdaptiveRetriever(
            index,
            embedder,
            RetrievalConfig(collection=collection, search_limit=5, truncate_fields=("responses_text",), field_char_limit=20),
        ),
        TemplateAnswerGenerator(),
        CitationExtractor(EntitySubstringStrategy()),
    )
    response = service.answer("how do I list pets?", filter_key="shop")
    assert response.success
    assert response.sources
    assert {source.document_key for source in response.sources} == {"shop"}
    payload = response.to_payload()
    assert payload["sources"][0]["documentKey"] == "shop"
    assert "rewrittenQuery" in payload


def test_rewrite_failure_retrieves_with_the_original_question():
    embedder = _StubEmbedder()
    question = "where is the deployment checklist?"
    service = _document_service(
        _StubIndex(_pages(0.9)),
        _FixedGenerator("See [Document 1]."),
        embedder=embedder,
        rewriter=QueryRewriter(_FailingChat()),
    )
    response = service.answer(question, history=[ConversationTurn(role="user", content="hi")])
    assert response.success
    assert response.rewritten_query == question
    assert embedder.texts == [question]
