"""Runtime configuration for the groundrag services."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed configuration model."""

    model_config = SettingsConfigDict(env_prefix="groundrag_", env_file=".env", case_sensitive=False)

    environment: Literal["dev", "test", "prod"] = "dev"

    # Vector store
    chroma_persist_dir: Path = Path("./.chroma")
    chroma_host: str | None = None
    chroma_port: int | None = None
    chroma_ssl: bool = False
    pages_collection: str = "doc_pages"
    api_collection: str = "api_endpoints"
    api_registry_path: Path | None = None

    # Embeddings: "hash" needs no network and is used for tests and offline runs
    embedding_provider: Literal["hash", "openai", "huggingface"] = "hash"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 1536

    # Chat models (query rewrite and grounded answers)
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    chat_model: str = "gpt-4o-mini"
    rewrite_model: str = "gpt-4o-mini"
    answer_temperature: float = 0.3
    answer_max_tokens: int = 2000
    api_answer_max_tokens: int = 4000
    rewrite_temperature: float = 0.2
    rewrite_max_tokens: int = 200
    request_timeout_seconds: float = 30.0

    # Page sources
    page_source: Literal["notion", "directory"] = "notion"
    default_source_id: str | None = None
    notion_api_key: str | None = None
    notion_version: str = "2022-06-28"

    # Chunking
    chunk_size: int = 1000
    chunk_overlap: int = 200

    # Relevance thresholds and context budget
    min_score: float = 0.35
    score_floor: float = 0.25
    score_step_down: float = 0.05
    context_limit: int = 5
    search_limit: int = 10
    api_search_limit: int = 5
    field_char_limit: int = 500
    history_turns: int = 5
    fallback_source_count: int = 3

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    @property
    def resolved_api_registry_path(self) -> Path:
        return self.api_registry_path or self.chroma_persist_dir / "api_documents.json"

    @property
    def use_openai_chat(self) -> bool:
        return bool(self.openai_api_key)


@lru_cache(maxsize=1)
def _cached_settings() -> Settings:
    return Settings()


def get_settings(override: Optional[dict[str, object]] = None) -> Settings:
    """Return settings, optionally overriding values without mutating cache."""

    if override:
        return Settings(**override)
    return _cached_settings()
