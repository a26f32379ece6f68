from __future__ import annotations

from uuid import uuid4

import chromadb
import pytest

from groundrag.embeddings.service import EmbeddingConfig, HashEmbeddingBackend
from groundrag.embeddings.store import ChromaVectorIndex, VectorIndexError, build_where
from groundrag.models import IndexedChunk, IndexedEndpoint


def _collection() -> str:
    return f"test-{uuid4().hex[:12]}"


def _chunk(backend: HashEmbeddingBackend, source_id: str, text: str, index: int, total: int) -> IndexedChunk:
    return IndexedChunk(
        chunk_id=f"{source_id}-{index}",
        text=text,
        source_id=source_id,
        source_title=f"Page {source_id}",
        source_url=f"https://notion.test/{source_id}",
        chunk_index=index,
        total_chunks=total,
        vector=backend.embed_text(text).vector,
    )


def test_build_where_combines_filters_with_and():
    assert build_where(None) is None
    assert build_where({"source_id": "p1"}) == {"source_id": "p1"}
    assert build_where({"document_type": "API", "document_key": "shop"}) == {
        "$and": [{"document_type": "API"}, {"document_key": "shop"}]
    }


def test_upsert_and_search_ranks_exact_match_first():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    index = ChromaVectorIndex(client=chromadb.EphemeralClient())
    collection = _collection()
    index.upsert(
        collection,
        [
            _chunk(backend, "p1", "alpha beta gamma", 0, 1).to_point(),
            _chunk(backend, "p2", "lorem ipsum", 0, 1).to_point(),
        ],
    )
    results = index.search(collection, backend.embed_text("alpha beta gamma").vector, limit=2)
    assert [item.item_id for item in results] == ["p1-0", "p2-0"]
    assert results[0].score == pytest.approx(1.0, abs=1e-5)
    assert results[0].payload["source_title"] == "Page p1"
    assert results[0].payload["chunk_index"] == 0


def test_search_on_empty_collection_returns_nothing():
    index = ChromaVectorIndex(client=chromadb.EphemeralClient())
    assert index.search(_collection(), (0.1,) * 16, limit=5) == []


def test_delete_exists_and_count_by_filter():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    index = ChromaVectorIndex(client=chromadb.EphemeralClient())
    collection = _collection()
    points = [_chunk(backend, "p1", f"text {i}", i, 3).to_point() for i in range(3)]
    points.append(_chunk(backend, "p2", "other", 0, 1).to_point())
    index.upsert(collection, points)

    assert index.exists(collection, {"source_id": "p1"})
    assert index.count(collection) == 4
    assert index.count(collection, {"source_id": "p1"}) == 3
    assert index.count_by_field(collection, "source_id") == {"p1": 3, "p2": 1}

    assert index.delete_by_filter(collection, {"source_id": "p1"}) == 3
    assert not index.exists(collection, {"source_id": "p1"})
    assert index.count(collection) == 1


def test_delete_requires_filters():
    index = ChromaVectorIndex(client=chromadb.EphemeralClient())
    with pytest.raises(ValueError):
        index.delete_by_filter(_collection(), {})


def test_endpoint_payload_round_trips_lists_and_filters():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=16))
    index = ChromaVectorIndex(client=chromadb.EphemeralClient())
    collection = _collection()
    endpoint = IndexedEndpoint(
        endpoint_id="e1",
        method="GET",
        path="/pets",
        summary="List pets",
        description="",
        tags=("pets", "public"),
        parameters_text="",
        request_body_text="",
        responses_text="status: 200",
        full_text="GET /pets",
        document_key="shop",
        document_id="doc-1",
        vector=backend.embed_text("GET /pets").vector,
    )
    index.upsert(collection, [endpoint.to_point()])
    results = index.search(
        collection,
        endpoint.vector,
        limit=5,
        filters={"document_type": "API", "document_key": "shop"},
    )
    assert len(results) == 1
    payload = results[0].payload
    assert payload["tags"] == ["pets", "public"]
    assert payload["endpoint"] == "GET /pets"
    assert "operation_id" not in payload
    assert index.search(collection, endpoint.vector, limit=5, filters={"document_key": "other"}) == []


class _UnavailableClient:
    def get_or_create_collection(self, **kwargs):
        raise ConnectionError("chroma unreachable")


def test_collection_failures_surface_as_index_errors():
    index = ChromaVectorIndex(client=_UnavailableClient())
    with pytest.raises(VectorIndexError):
        index.search("pages", [0.1, 0.2], limit=3)
    with pytest.raises(VectorIndexError):
        index.count("pages")
    with pytest.raises(VectorIndexError):
        index.count_by_field("pages", "source_id")
    with pytest.raises(VectorIndexError):
        index.delete_by_filter("pages", {"source_id": "p1"})
