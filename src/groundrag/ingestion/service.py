"""Ingestion orchestration for documentation pages and API specifications."""

from __future__ import annotations

import json
import time
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Protocol, Sequence
from uuid import NAMESPACE_URL, uuid4, uuid5

import httpx

from groundrag.embeddings import EmbeddingBackend, EmbeddingError, VectorIndex, VectorIndexError
from groundrag.ingestion.chunker import FixedWindowTextSplitter
from groundrag.ingestion.errors import IngestionError
from groundrag.ingestion.openapi import (
    EndpointRecord,
    extract_endpoints,
    fetch_openapi_spec,
    format_endpoint_text,
    parameters_to_text,
    request_body_to_text,
    responses_to_text,
    schema_registry,
)
from groundrag.ingestion.sources import PageSource, SourcePage
from groundrag.metrics.observability import PipelineMetrics, get_logger
from groundrag.models import ApiDocumentRecord, IndexedChunk, IndexedEndpoint, IndexingStatus


@dataclass(frozen=True)
class PageIngestionReport:
    pages_processed: int
    pages_skipped: int
    chunks_created: int
    pages_failed: int = 0


@dataclass(frozen=True)
class PageSummary:
    source_id: str
    title: str
    url: str | None
    chunk_count: int


@dataclass(frozen=True)
class IndexStats:
    collection: str
    total_vectors: int
    chunks_per_source: Mapping[str, int] = field(default_factory=dict)
    pages: Sequence[PageSummary] = ()


@dataclass(frozen=True)
class ApiIngestionReport:
    success: bool
    message: str
    document: ApiDocumentRecord | None = None
    api_count: int = 0


@dataclass(frozen=True)
class DeletionReport:
    success: bool
    message: str
    deleted_apis: int = 0


class PageIngestionService:
    """Chunk, embed and index the pages of a source.

    Pages already present in the index are skipped unless ``force`` is set,
    in which case their old chunks are replaced. A page is embedded
    completely before anything is deleted or written, so a failure part way
    through a page leaves its previous chunk set untouched.
    """

    kind = "page"

    def __init__(
        self,
        source: PageSource,
        embedder: EmbeddingBackend,
        index: VectorIndex,
        *,
        collection: str,
        chunker: FixedWindowTextSplitter | None = None,
        default_source_id: str | None = None,
    ) -> None:
        self._source = source
        self._embedder = embedder
        self._index = index
        self._collection = collection
        self._chunker = chunker or FixedWindowTextSplitter()
        self._default_source_id = default_source_id
        self._logger = get_logger("ingestion")

    def ingest(self, source_id: str | None = None, *, force: bool = False) -> PageIngestionReport:
        source_id = source_id or self._default_source_id
        if not source_id:
            raise IngestionError("No source id given and no default source configured")

        pages = self._source.list_pages(source_id)
        self._logger.info("ingestion.started", source_id=source_id, page_count=len(pages), force=force)

        skipped = 0
        failed = 0
        chunks_created = 0
        for page in pages:
            try:
                present = self._index.exists(self._collection, {"source_id": page.page_id})
                if present and not force:
                    self._logger.info("ingestion.page_skipped", page_id=page.page_id, title=page.title)
                    skipped += 1
                    continue
                chunks_created += self._ingest_page(page, replace_existing=present)
            except (IngestionError, EmbeddingError, VectorIndexError) as exc:
                failed += 1
                PipelineMetrics.observe_ingestion_failure(self.kind)
                self._logger.error("ingestion.page_failed", page_id=page.page_id, title=page.title, detail=str(exc))

        report = PageIngestionReport(
            pages_processed=len(pages) - skipped,
            pages_skipped=skipped,
            chunks_created=chunks_created,
            pages_failed=failed,
        )
        self._logger.info(
            "ingestion.complete",
            source_id=source_id,
            pages_processed=report.pages_processed,
            pages_skipped=report.pages_skipped,
            pages_failed=report.pages_failed,
            chunks_created=report.chunks_created,
        )
        return report

    def _ingest_page(self, page: SourcePage, *, replace_existing: bool = False) -> int:
        start = time.perf_counter()
        text = self._source.load_text(page)
        if not text.strip():
            self._logger.warning("ingestion.page_empty", page_id=page.page_id, title=page.title)
            if replace_existing:
                self._purge_page(page)
            return 0

        windows = self._chunker.split_text(text)
        chunks = []
        for chunk_index, window in enumerate(windows):
            embedding = self._embedder.embed_text(window)
            chunks.append(
                IndexedChunk(
                    chunk_id=f"{page.page_id}-{chunk_index}",
                    text=window,
                    source_id=page.page_id,
                    source_title=page.title,
                    source_url=page.url,
                    chunk_index=chunk_index,
                    total_chunks=len(windows),
                    vector=embedding.vector,
                )
            )
        # old chunks go only once the replacement set is fully embedded
        if replace_existing:
            self._purge_page(page)
        self._index.upsert(self._collection, [chunk.to_point() for chunk in chunks])

        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(self.kind, duration, len(chunks))
        self._logger.info(
            "ingestion.page_indexed",
            page_id=page.page_id,
            title=page.title,
            text_length=len(text),
            chunk_count=len(chunks),
            duration_seconds=duration,
        )
        return len(chunks)

    def _purge_page(self, page: SourcePage) -> None:
        deleted = self._index.delete_by_filter(self._collection, {"source_id": page.page_id})
        self._logger.info("ingestion.page_purged", page_id=page.page_id, deleted=deleted)

    def stats(self) -> IndexStats:
        counts = dict(self._index.count_by_field(self._collection, "source_id"))
        payloads = self._index.first_payload_by_field(self._collection, "source_id")
        pages = [
            PageSummary(
                source_id=source_id,
                title=str(payloads.get(source_id, {}).get("source_title") or "Unknown"),
                url=payloads.get(source_id, {}).get("source_url"),
                chunk_count=count,
            )
            for source_id, count in sorted(counts.items())
        ]
        return IndexStats(
            collection=self._collection,
            total_vectors=self._index.count(self._collection),
            chunks_per_source=counts,
            pages=tuple(pages),
        )


class ApiDocumentRegistry(Protocol):
    """Persistence for uploaded API specification records."""

    def get(self, document_id: str) -> ApiDocumentRecord | None:
        ...

    def get_by_key(self, key: str) -> ApiDocumentRecord | None:
        ...

    def save(self, record: ApiDocumentRecord) -> None:
        ...

    def delete(self, document_id: str) -> None:
        ...

    def list(self) -> Sequence[ApiDocumentRecord]:
        ...


class InMemoryApiDocumentRegistry:
    def __init__(self) -> None:
        self._records: Dict[str, ApiDocumentRecord] = {}

    def get(self, document_id: str) -> ApiDocumentRecord | None:
        return self._records.get(document_id)

    def get_by_key(self, key: str) -> ApiDocumentRecord | None:
        for record in self._records.values():
            if record.key == key:
                return record
        return None

    def save(self, record: ApiDocumentRecord) -> None:
        self._records[record.document_id] = record

    def delete(self, document_id: str) -> None:
        self._records.pop(document_id, None)

    def list(self) -> List[ApiDocumentRecord]:
        return sorted(self._records.values(), key=lambda record: record.created_at)


def _record_to_json(record: ApiDocumentRecord) -> Dict[str, Any]:
    data = asdict(record)
    data["status"] = record.status.value
    data["created_at"] = record.created_at.isoformat()
    data["last_indexed_at"] = record.last_indexed_at.isoformat() if record.last_indexed_at else None
    return data


def _record_from_json(data: Mapping[str, Any]) -> ApiDocumentRecord:
    values = dict(data)
    values["status"] = IndexingStatus(values.get("status", IndexingStatus.PENDING.value))
    values["created_at"] = datetime.fromisoformat(values["created_at"])
    if values.get("last_indexed_at"):
        values["last_indexed_at"] = datetime.fromisoformat(values["last_indexed_at"])
    return ApiDocumentRecord(**values)


class JsonFileApiDocumentRegistry(InMemoryApiDocumentRegistry):
    """Registry persisted as a JSON file so records survive between CLI runs."""

    def __init__(self, path: Path) -> None:
        super().__init__()
        self._path = path
        if path.exists():
            try:
                rows = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as exc:
                raise IngestionError(f"Failed to read API document registry {path}: {exc}") from exc
            for row in rows:
                record = _record_from_json(row)
                self._records[record.document_id] = record

    def _flush(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        rows = [_record_to_json(record) for record in self.list()]
        self._path.write_text(json.dumps(rows, ensure_ascii=False, indent=2), encoding="utf-8")

    def save(self, record: ApiDocumentRecord) -> None:
        super().save(record)
        self._flush()

    def delete(self, document_id: str) -> None:
        super().delete(document_id)
        self._flush()


class ApiSpecIngestionService:
    """Index every operation of an OpenAPI/Swagger document as one vector.

    Uploading under an existing key replaces the previous document: its
    vectors are purged by document id and its record dropped before the new
    one is created.
    """

    kind = "api"

    def __init__(
        self,
        embedder: EmbeddingBackend,
        index: VectorIndex,
        registry: ApiDocumentRegistry,
        *,
        collection: str,
        timeout_seconds: float = 30.0,
        http_client: httpx.Client | None = None,
    ) -> None:
        self._embedder = embedder
        self._index = index
        self._registry = registry
        self._collection = collection
        self._timeout_seconds = timeout_seconds
        self._http_client = http_client
        self._logger = get_logger("ingestion.api")

    def upload_from_url(self, key: str, url: str) -> ApiIngestionReport:
        spec = fetch_openapi_spec(url, client=self._http_client, timeout=self._timeout_seconds)
        return self.upload(key, spec, source_url=url)

    def upload(self, key: str, spec: Mapping[str, Any], *, source_url: str | None = None) -> ApiIngestionReport:
        previous = self._registry.get_by_key(key)
        if previous is not None:
            deleted = self._index.delete_by_filter(self._collection, {"document_id": previous.document_id})
            self._registry.delete(previous.document_id)
            self._logger.info("api.replaced", key=key, document_id=previous.document_id, deleted=deleted)

        info = spec.get("info") if isinstance(spec.get("info"), Mapping) else {}
        record = ApiDocumentRecord(
            document_id=uuid4().hex,
            key=key,
            title=info.get("title"),
            version=info.get("version"),
            description=info.get("description"),
            source_url=source_url,
            status=IndexingStatus.PROCESSING,
        )
        self._registry.save(record)

        start = time.perf_counter()
        try:
            indexed = self._index_endpoints(record, spec, info)
        except (IngestionError, VectorIndexError) as exc:
            PipelineMetrics.observe_ingestion_failure(self.kind)
            failed = replace(record, status=IndexingStatus.FAILED, error_message=str(exc))
            self._registry.save(failed)
            self._logger.error("api.failed", key=key, document_id=record.document_id, detail=str(exc))
            return ApiIngestionReport(success=False, message=f"Failed to index API specification: {exc}", document=failed)

        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(self.kind, duration, indexed)
        completed = replace(
            record,
            status=IndexingStatus.COMPLETED,
            api_count=indexed,
            last_indexed_at=datetime.now(timezone.utc),
        )
        self._registry.save(completed)
        self._logger.info(
            "api.indexed",
            key=key,
            document_id=record.document_id,
            api_count=indexed,
            duration_seconds=duration,
        )
        return ApiIngestionReport(
            success=True,
            message=f"Indexed {indexed} API endpoints",
            document=completed,
            api_count=indexed,
        )

    def _index_endpoints(self, record: ApiDocumentRecord, spec: Mapping[str, Any], info: Mapping[str, Any]) -> int:
        records = extract_endpoints(spec)
        if not records:
            raise IngestionError("No API endpoints found in the specification")
        registry = schema_registry(spec)

        stored = 0
        for endpoint in records:
            full_text = format_endpoint_text(endpoint, info, registry)
            try:
                embedding = self._embedder.embed_text(full_text)
                indexed = self._build_endpoint(record, endpoint, full_text, registry, embedding.vector)
                self._index.upsert(self._collection, [indexed.to_point()])
            except (EmbeddingError, VectorIndexError) as exc:
                PipelineMetrics.observe_ingestion_failure(self.kind)
                self._logger.warning("api.endpoint_failed", endpoint=endpoint.endpoint, detail=str(exc))
                continue
            stored += 1
        return stored

    @staticmethod
    def _build_endpoint(
        record: ApiDocumentRecord,
        endpoint: EndpointRecord,
        full_text: str,
        registry: Mapping[str, Any],
        vector: Sequence[float],
    ) -> IndexedEndpoint:
        return IndexedEndpoint(
            endpoint_id=uuid5(NAMESPACE_URL, f"{record.document_id}:{endpoint.endpoint}").hex,
            method=endpoint.method,
            path=endpoint.path,
            summary=endpoint.summary,
            description=endpoint.description,
            tags=tuple(endpoint.tags),
            parameters_text=parameters_to_text(endpoint.parameters, registry),
            request_body_text=request_body_to_text(endpoint.request_body, registry),
            responses_text=responses_to_text(endpoint.responses, registry),
            full_text=full_text,
            document_key=record.key,
            document_id=record.document_id,
            operation_id=endpoint.operation_id,
            document_title=record.title,
            document_version=record.version,
            source_url=record.source_url,
            vector=vector,
        )

    def delete_document(self, document_id: str) -> DeletionReport:
        record = self._registry.get(document_id)
        if record is None:
            return DeletionReport(success=False, message=f"API document not found: {document_id}")
        deleted = self._index.delete_by_filter(self._collection, {"document_id": document_id})
        self._registry.delete(document_id)
        self._logger.info("api.deleted", key=record.key, document_id=document_id, deleted=deleted)
        return DeletionReport(success=True, message=f"Deleted API document {record.key}", deleted_apis=deleted)

    def documents(self) -> Sequence[ApiDocumentRecord]:
        return self._registry.list()
