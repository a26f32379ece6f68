"""Dependency wiring for the groundrag services."""

from __future__ import annotations

from dataclasses import dataclass

import chromadb

from groundrag.config import Settings, get_settings
from groundrag.embeddings import (
    ChromaVectorIndex,
    EmbeddingBackend,
    EmbeddingConfig,
    HashEmbeddingBackend,
    HuggingFaceEmbeddingBackend,
    OpenAIEmbeddingBackend,
    VectorIndex,
)
from groundrag.ingestion import (
    ApiSpecIngestionService,
    DirectoryPageSource,
    FixedWindowTextSplitter,
    JsonFileApiDocumentRegistry,
    NotionPageSource,
    PageIngestionService,
    PageSource,
)
from groundrag.retrieval import AdaptiveRetriever, QueryRewriter, RelevancePolicy, RetrievalConfig
from groundrag.services.citations import CitationExtractor, EntitySubstringStrategy, IndexMarkerStrategy
from groundrag.services.generation import (
    AnswerGenerator,
    ApiPromptBuilder,
    ChatAnswerGenerator,
    DocumentPromptBuilder,
    GenerationConfig,
    OpenAIChatBackend,
    TemplateAnswerGenerator,
)
from groundrag.services.query import ApiQueryService, DocumentQueryService

API_TRUNCATED_FIELDS = ("description", "parameters_text", "request_body_text", "responses_text")


@dataclass(frozen=True)
class AppDependencies:
    index: VectorIndex
    embedder: EmbeddingBackend
    page_ingestion: PageIngestionService
    api_ingestion: ApiSpecIngestionService
    document_queries: DocumentQueryService
    api_queries: ApiQueryService


def build_embedder(settings: Settings) -> EmbeddingBackend:
    config = EmbeddingConfig(
        model=settings.embedding_model,
        dim=settings.embedding_dim,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout_seconds=settings.request_timeout_seconds,
    )
    if settings.embedding_provider == "openai":
        return OpenAIEmbeddingBackend(config)
    if settings.embedding_provider == "huggingface":
        return HuggingFaceEmbeddingBackend(config)
    return HashEmbeddingBackend(config)


def build_index(settings: Settings) -> ChromaVectorIndex:
    if settings.chroma_host:
        client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
        return ChromaVectorIndex(client=client)
    return ChromaVectorIndex(persist_directory=settings.chroma_persist_dir)


def build_page_source(settings: Settings) -> PageSource:
    if settings.page_source == "directory":
        return DirectoryPageSource()
    return NotionPageSource(
        api_key=settings.notion_api_key or "",
        notion_version=settings.notion_version,
        timeout_seconds=settings.request_timeout_seconds,
    )


def _relevance_policy(settings: Settings) -> RelevancePolicy:
    return RelevancePolicy(
        min_score=settings.min_score,
        score_floor=settings.score_floor,
        step_down=settings.score_step_down,
        context_limit=settings.context_limit,
    )


def _build_generators(settings: Settings) -> tuple[QueryRewriter, AnswerGenerator, AnswerGenerator]:
    if not settings.use_openai_chat:
        template = TemplateAnswerGenerator()
        return QueryRewriter(), template, template
    chat = OpenAIChatBackend(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        default_model=settings.chat_model,
        timeout_seconds=settings.request_timeout_seconds,
    )
    rewriter = QueryRewriter(
        chat,
        model=settings.rewrite_model,
        history_turns=settings.history_turns,
        temperature=settings.rewrite_temperature,
        max_tokens=settings.rewrite_max_tokens,
    )
    document_generator = ChatAnswerGenerator(
        chat,
        DocumentPromptBuilder(),
        GenerationConfig(
            model=settings.chat_model,
            max_tokens=settings.answer_max_tokens,
            temperature=settings.answer_temperature,
            history_turns=settings.history_turns,
        ),
    )
    api_generator = ChatAnswerGenerator(
        chat,
        ApiPromptBuilder(),
        GenerationConfig(
            model=settings.chat_model,
            max_tokens=settings.api_answer_max_tokens,
            temperature=settings.answer_temperature,
            history_turns=settings.history_turns,
        ),
    )
    return rewriter, document_generator, api_generator


def build_dependencies(
    settings: Settings | None = None,
    *,
    index: VectorIndex | None = None,
    embedder: EmbeddingBackend | None = None,
    page_source: PageSource | None = None,
) -> AppDependencies:
    settings = settings or get_settings()
    index = index or build_index(settings)
    embedder = embedder or build_embedder(settings)
    policy = _relevance_policy(settings)

    page_ingestion = PageIngestionService(
        page_source or build_page_source(settings),
        embedder,
        index,
        collection=settings.pages_collection,
        chunker=FixedWindowTextSplitter(chunk_size=settings.chunk_size, chunk_overlap=settings.chunk_overlap),
        default_source_id=settings.default_source_id,
    )
    api_ingestion = ApiSpecIngestionService(
        embedder,
        index,
        JsonFileApiDocumentRegistry(settings.resolved_api_registry_path),
        collection=settings.api_collection,
        timeout_seconds=settings.request_timeout_seconds,
    )

    rewriter, document_generator, api_generator = _build_generators(settings)
    document_queries = DocumentQueryService(
        rewriter,
        AdaptiveRetriever(
            index,
            embedder,
            RetrievalConfig(collection=settings.pages_collection, search_limit=settings.search_limit, policy=policy),
        ),
        document_generator,
        CitationExtractor(IndexMarkerStrategy(), fallback_count=settings.fallback_source_count),
    )
    api_queries = ApiQueryService(
        rewriter,
        AdaptiveRetriever(
            index,
            embedder,
            RetrievalConfig(
                collection=settings.api_collection,
                search_limit=settings.api_search_limit,
                policy=policy,
                truncate_fields=API_TRUNCATED_FIELDS,
                field_char_limit=settings.field_char_limit,
            ),
        ),
        api_generator,
        CitationExtractor(EntitySubstringStrategy(), fallback_count=settings.fallback_source_count),
    )
    return AppDependencies(
        index=index,
        embedder=embedder,
        page_ingestion=page_ingestion,
        api_ingestion=api_ingestion,
        document_queries=document_queries,
        api_queries=api_queries,
    )
