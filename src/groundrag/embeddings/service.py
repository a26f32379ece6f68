"""Embedding backends for groundrag."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass, field
from typing import Protocol, Tuple

from langchain_community.embeddings import HuggingFaceEmbeddings
from langchain_core.embeddings import Embeddings as LangChainEmbeddings
from openai import OpenAI, OpenAIError

from groundrag.models import TokenUsage

LOGGER = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Raised when a text cannot be embedded."""


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    model: str = "text-embedding-3-small"
    dim: int = 1536
    device: str | None = None
    normalize: bool = True
    cache_folder: str | None = None
    api_key: str | None = None
    base_url: str | None = None
    timeout_seconds: float = 30.0


@dataclass(frozen=True)
class EmbeddingResult:
    """Vector for one text plus the tokens spent producing it."""

    vector: Tuple[float, ...]
    usage: TokenUsage = field(default_factory=TokenUsage)


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    def embed_text(self, text: str) -> EmbeddingResult:
        """Return the embedding of ``text``; raise ``EmbeddingError`` on failure."""


def _normalize(vector: Tuple[float, ...]) -> Tuple[float, ...]:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


class HashEmbeddingBackend:
    """Deterministic lightweight embedding used for tests and offline runs."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _hash_to_vector(self, text: str) -> Tuple[float, ...]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = tuple(byte / 255.0 for byte in raw)
        return _normalize(vector) if self._config.normalize else vector

    def embed_text(self, text: str) -> EmbeddingResult:
        return EmbeddingResult(vector=self._hash_to_vector(text))


class OpenAIEmbeddingBackend:
    """Embeddings from the OpenAI embeddings endpoint, with token usage."""

    def __init__(self, config: EmbeddingConfig | None = None, *, client: OpenAI | None = None) -> None:
        self._config = config or EmbeddingConfig()
        self._client = client or OpenAI(
            api_key=self._config.api_key,
            base_url=self._config.base_url,
            timeout=self._config.timeout_seconds,
        )
        LOGGER.info("Using OpenAI embedding model %s", self._config.model)

    def embed_text(self, text: str) -> EmbeddingResult:
        try:
            response = self._client.embeddings.create(model=self._config.model, input=text)
        except OpenAIError as exc:
            LOGGER.error("Failed to generate embedding: %s", exc)
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc
        if not response.data:
            raise EmbeddingError("Embedding response contained no vectors")
        vector = tuple(float(value) for value in response.data[0].embedding)
        if len(vector) != self._config.dim:
            LOGGER.warning(
                "Embedding dim mismatch: configured=%d, actual=%d",
                self._config.dim,
                len(vector),
            )
        usage = response.usage
        return EmbeddingResult(
            vector=vector,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                total_tokens=getattr(usage, "total_tokens", 0) or 0,
            ),
        )


class HuggingFaceEmbeddingBackend:
    """Local sentence-embedding model loaded through LangChain."""

    def __init__(self, config: EmbeddingConfig | None = None, *, client: LangChainEmbeddings | None = None) -> None:
        self._config = config or EmbeddingConfig(model="BAAI/bge-small-en-v1.5", dim=384)
        if client is not None:
            self._client = client
            return
        model_kwargs = {"device": self._config.device} if self._config.device else {}
        self._client = HuggingFaceEmbeddings(
            model_name=self._config.model,
            model_kwargs=model_kwargs,
            cache_folder=self._config.cache_folder,
            encode_kwargs={"normalize_embeddings": self._config.normalize},
        )
        LOGGER.info("Loaded embedding model %s", self._config.model)

    def embed_text(self, text: str) -> EmbeddingResult:
        try:
            vector = tuple(float(value) for value in self._client.embed_query(text))
        except Exception as exc:  # noqa: BLE001 - model runtimes raise arbitrary errors
            raise EmbeddingError(f"Local embedding failed: {exc}") from exc
        return EmbeddingResult(vector=_normalize(vector) if self._config.normalize else vector)
