"""Shared domain models used across the groundrag pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping, Sequence, Tuple

API_DOCUMENT_TYPE = "API"


@dataclass(frozen=True)
class TokenUsage:
    """Token counters reported by a model call."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


@dataclass(frozen=True)
class ConversationTurn:
    """One prior message of a conversation."""

    role: Literal["user", "assistant"]
    content: str


@dataclass(frozen=True)
class VectorPoint:
    """Unit written to the vector index."""

    point_id: str
    vector: Tuple[float, ...]
    payload: Mapping[str, Any]


@dataclass(frozen=True)
class IndexedChunk:
    """Overlapping window of a documentation page."""

    chunk_id: str
    text: str
    source_id: str
    source_title: str
    source_url: str
    chunk_index: int
    total_chunks: int
    vector: Tuple[float, ...] = ()

    def payload(self) -> dict[str, Any]:
        return {
            "text": self.text,
            "source_id": self.source_id,
            "source_title": self.source_title,
            "source_url": self.source_url,
            "chunk_index": self.chunk_index,
            "total_chunks": self.total_chunks,
        }

    def to_point(self) -> VectorPoint:
        return VectorPoint(point_id=self.chunk_id, vector=self.vector, payload=self.payload())


@dataclass(frozen=True)
class IndexedEndpoint:
    """Flattened HTTP operation of an API specification."""

    endpoint_id: str
    method: str
    path: str
    summary: str
    description: str
    tags: Sequence[str]
    parameters_text: str
    request_body_text: str
    responses_text: str
    full_text: str
    document_key: str
    document_id: str
    operation_id: str | None = None
    document_title: str | None = None
    document_version: str | None = None
    source_url: str | None = None
    vector: Tuple[float, ...] = ()

    @property
    def endpoint(self) -> str:
        return f"{self.method} {self.path}"

    def payload(self) -> dict[str, Any]:
        return {
            "endpoint": self.endpoint,
            "method": self.method,
            "path": self.path,
            "summary": self.summary,
            "description": self.description,
            "tags": list(self.tags),
            "operation_id": self.operation_id,
            "parameters_text": self.parameters_text,
            "request_body_text": self.request_body_text,
            "responses_text": self.responses_text,
            "full_text": self.full_text,
            "document_key": self.document_key,
            "document_id": self.document_id,
            "document_title": self.document_title,
            "document_version": self.document_version,
            "source_url": self.source_url,
            "document_type": API_DOCUMENT_TYPE,
        }

    def to_point(self) -> VectorPoint:
        return VectorPoint(point_id=self.endpoint_id, vector=self.vector, payload=self.payload())


@dataclass(frozen=True)
class RetrievedItem:
    """Point returned from a similarity query."""

    item_id: str
    score: float
    payload: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class RelevanceDecision:
    """Outcome of the adaptive relevance threshold.

    An empty ``items`` tuple is the "no relevant information" sentinel; in that
    case ``used_threshold`` is the configured minimum score.
    """

    items: Tuple[RetrievedItem, ...]
    max_score: float
    used_threshold: float
    candidate_count: int = 0
    relaxed: bool = False
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def found(self) -> bool:
        return bool(self.items)


@dataclass(frozen=True)
class CitationSet:
    """Context positions (0-based) an answer refers to."""

    positions: Tuple[int, ...]
    fallback: bool = False


class IndexingStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ApiDocumentRecord:
    """Bookkeeping row for an uploaded API specification."""

    document_id: str
    key: str
    title: str | None = None
    version: str | None = None
    description: str | None = None
    source_url: str | None = None
    status: IndexingStatus = IndexingStatus.PENDING
    api_count: int = 0
    error_message: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    last_indexed_at: datetime | None = None
