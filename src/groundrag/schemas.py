"""Pydantic models for the groundrag entry points."""

from __future__ import annotations

from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from groundrag.models import ConversationTurn, TokenUsage


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ConversationTurnModel(_CamelModel):
    role: Literal["user", "assistant"]
    content: str

    def to_turn(self) -> ConversationTurn:
        return ConversationTurn(role=self.role, content=self.content)


class QueryRequest(_CamelModel):
    question: str = Field(..., min_length=1, description="End-user question to answer")
    conversation_history: Optional[List[ConversationTurnModel]] = Field(
        default=None,
        description="Prior turns of the conversation, oldest first",
    )
    filter_key: Optional[str] = Field(
        default=None,
        description="Restrict retrieval to one source (page source id or API document key)",
    )

    def history(self) -> list[ConversationTurn]:
        return [turn.to_turn() for turn in self.conversation_history or []]


class UsageModel(_CamelModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_usage(cls, usage: TokenUsage) -> "UsageModel":
        return cls(
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )


class DocumentSourceModel(_CamelModel):
    page_title: str
    page_url: str
    score: float
    chunk_text: str


class ApiSourceModel(_CamelModel):
    endpoint: str
    method: str
    path: str
    score: float
    document_key: Optional[str] = None


SourceModel = Union[DocumentSourceModel, ApiSourceModel]


class QueryResponse(_CamelModel):
    """Outcome of a query; ``success`` is authoritative, not transport status."""

    success: bool
    answer: str
    sources: List[SourceModel] = Field(default_factory=list)
    question: Optional[str] = None
    rewritten_query: Optional[str] = None
    usage: Optional[UsageModel] = None
    fallback_sources: Optional[bool] = Field(
        default=None,
        description="True when no citation was found and the top-scoring items were returned instead",
    )
    max_score: Optional[float] = None
    threshold: Optional[float] = None
    error: Optional[str] = None

    def to_payload(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class PageIngestionRequest(_CamelModel):
    source_id: Optional[str] = None
    force: bool = False


class PageIngestionResponse(_CamelModel):
    pages_processed: int
    pages_skipped: int
    chunks_created: int
    pages_failed: int = 0


class ApiIngestionResponse(_CamelModel):
    success: bool
    message: str
    document_id: Optional[str] = None
    document_key: Optional[str] = None
    api_count: Optional[int] = None


class PageStats(_CamelModel):
    source_id: str
    page_title: str
    page_url: Optional[str] = None
    chunk_count: int


class IndexStatsResponse(_CamelModel):
    collection: str
    total_vectors: int
    total_pages: int
    pages: List[PageStats]
