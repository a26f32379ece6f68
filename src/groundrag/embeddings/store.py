"""Vector index implementations."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, MutableMapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI
from chromadb.api.models.Collection import Collection

from groundrag.models import RetrievedItem, VectorPoint

LOGGER = logging.getLogger(__name__)

# Metadata key listing the payload fields stored as JSON strings
_JSON_FIELDS_KEY = "_json_fields"


class VectorIndexError(RuntimeError):
    """Raised when the vector store rejects an operation."""


class VectorIndex(Protocol):
    """Protocol for vector persistence backends.

    ``filters`` are flat equality mappings combined with AND.
    """

    def upsert(self, collection: str, points: Sequence[VectorPoint]) -> None:
        """Insert or replace the given points."""

    def search(
        self,
        collection: str,
        vector: Sequence[float],
        *,
        limit: int,
        filters: Mapping[str, Any] | None = None,
    ) -> Sequence[RetrievedItem]:
        """Return up to ``limit`` items ordered by descending similarity."""

    def delete_by_filter(self, collection: str, filters: Mapping[str, Any]) -> int:
        """Delete matching points and return how many were removed."""

    def exists(self, collection: str, filters: Mapping[str, Any]) -> bool:
        """Return whether at least one point matches."""

    def count(self, collection: str, filters: Mapping[str, Any] | None = None) -> int:
        """Return the number of (matching) points."""

    def count_by_field(self, collection: str, field: str) -> Mapping[str, int]:
        """Return point counts grouped by a payload field."""

    def first_payload_by_field(self, collection: str, field: str) -> Mapping[str, Mapping[str, Any]]:
        """Return one representative payload per value of a payload field."""


def build_where(filters: Mapping[str, Any] | None) -> Dict[str, Any] | None:
    if not filters:
        return None
    clauses = [{key: value} for key, value in filters.items()]
    if len(clauses) == 1:
        return clauses[0]
    return {"$and": clauses}


class ChromaVectorIndex:
    """Chroma-backed vector index using cosine similarity."""

    def __init__(
        self,
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collections: Dict[str, Collection] = {}

    def _collection(self, name: str) -> Collection:
        collection = self._collections.get(name)
        if collection is None:
            collection = self._client.get_or_create_collection(
                name=name,
                metadata={"hnsw:space": "cosine"},
            )
            self._collections[name] = collection
        return collection

    def upsert(self, collection: str, points: Sequence[VectorPoint]) -> None:
        if not points:
            return
        try:
            self._collection(collection).upsert(
                ids=[point.point_id for point in points],
                embeddings=[list(point.vector) for point in points],
                metadatas=[self._serialize_payload(point.payload) for point in points],
            )
        except Exception as exc:  # noqa: BLE001 - chroma raises backend specific errors
            raise VectorIndexError(f"Upsert into {collection} failed: {exc}") from exc

    def search(
        self,
        collection: str,
        vector: Sequence[float],
        *,
        limit: int,
        filters: Mapping[str, Any] | None = None,
    ) -> Sequence[RetrievedItem]:
        if limit <= 0:
            return []
        try:
            target = self._collection(collection)
            if target.count() == 0:
                return []
            results = target.query(
                query_embeddings=[list(vector)],
                n_results=limit,
                where=build_where(filters),
                include=["metadatas", "distances"],
            )
        except Exception as exc:  # noqa: BLE001
            raise VectorIndexError(f"Search in {collection} failed: {exc}") from exc
        items = self._deserialize_results(results)
        return sorted(items, key=lambda item: item.score, reverse=True)

    def delete_by_filter(self, collection: str, filters: Mapping[str, Any]) -> int:
        if not filters:
            raise ValueError("delete_by_filter requires at least one filter")
        try:
            target = self._collection(collection)
            ids = target.get(where=build_where(filters), include=[])["ids"]
            if ids:
                target.delete(ids=ids)
        except Exception as exc:  # noqa: BLE001
            raise VectorIndexError(f"Delete from {collection} failed: {exc}") from exc
        return len(ids)

    def exists(self, collection: str, filters: Mapping[str, Any]) -> bool:
        try:
            found = self._collection(collection).get(where=build_where(filters), limit=1, include=[])
        except Exception as exc:  # noqa: BLE001
            raise VectorIndexError(f"Lookup in {collection} failed: {exc}") from exc
        return bool(found["ids"])

    def count(self, collection: str, filters: Mapping[str, Any] | None = None) -> int:
        try:
            target = self._collection(collection)
            if not filters:
                return int(target.count())
            return len(target.get(where=build_where(filters), include=[])["ids"])
        except Exception as exc:  # noqa: BLE001
            raise VectorIndexError(f"Count in {collection} failed: {exc}") from exc

    def count_by_field(self, collection: str, field: str) -> Mapping[str, int]:
        counts: dict[str, int] = {}
        for md in self._scan_metadatas(collection):
            value = str(md.get(field, "")) or "unknown"
            counts[value] = counts.get(value, 0) + 1
        return counts

    def first_payload_by_field(self, collection: str, field: str) -> Mapping[str, Mapping[str, Any]]:
        payloads: dict[str, Mapping[str, Any]] = {}
        for md in self._scan_metadatas(collection):
            value = str(md.get(field, "")) or "unknown"
            if value not in payloads:
                payloads[value] = self._deserialize_payload(md)
        return payloads

    def _scan_metadatas(self, collection: str) -> Iterator[Mapping[str, Any]]:
        # paginate through metadatas only
        limit = 1000
        offset = 0
        while True:
            try:
                batch = self._collection(collection).get(include=["metadatas"], limit=limit, offset=offset)
            except Exception as exc:  # noqa: BLE001
                raise VectorIndexError(f"Scan of {collection} failed: {exc}") from exc
            metadatas = batch.get("metadatas") or []
            for md in metadatas:
                if isinstance(md, Mapping):
                    yield md
            if len(metadatas) < limit:
                break
            offset += limit

    @staticmethod
    def _serialize_payload(payload: Mapping[str, Any]) -> MutableMapping[str, Any]:
        metadata: MutableMapping[str, Any] = {}
        json_fields: List[str] = []
        for key, value in payload.items():
            if value is None:
                continue
            if isinstance(value, (str, int, float, bool)):
                metadata[key] = value
            else:
                metadata[key] = json.dumps(value, default=str)
                json_fields.append(key)
        if json_fields:
            metadata[_JSON_FIELDS_KEY] = ",".join(json_fields)
        return metadata

    @staticmethod
    def _deserialize_payload(metadata: Mapping[str, Any] | None) -> Dict[str, Any]:
        if not metadata:
            return {}
        payload = {key: value for key, value in metadata.items() if key != _JSON_FIELDS_KEY}
        for key in str(metadata.get(_JSON_FIELDS_KEY, "")).split(","):
            if key and isinstance(payload.get(key), str):
                try:
                    payload[key] = json.loads(payload[key])
                except json.JSONDecodeError:
                    LOGGER.warning("Payload field %s is not valid JSON; keeping raw value", key)
        return payload

    def _deserialize_results(self, results: Mapping[str, Any]) -> List[RetrievedItem]:
        ids = self._first(results.get("ids"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        retrieved: List[RetrievedItem] = []
        for position, item_id in enumerate(ids):
            metadata = metadatas[position] if position < len(metadatas) else None
            distance = distances[position] if position < len(distances) else None
            score = 1.0 - float(distance) if distance is not None else 0.0
            retrieved.append(
                RetrievedItem(item_id=str(item_id), score=score, payload=self._deserialize_payload(metadata))
            )
        return retrieved

    @staticmethod
    def _first(value: object) -> list:
        if isinstance(value, list) and value:
            return list(value[0] or [])
        return []
