from __future__ import annotations

import math
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from groundrag.embeddings.service import (
    EmbeddingConfig,
    EmbeddingError,
    HashEmbeddingBackend,
    HuggingFaceEmbeddingBackend,
    OpenAIEmbeddingBackend,
)


class _StubEmbeddings:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.calls = []

    def create(self, *, model: str, input: str):
        self.calls.append((model, input))
        if self.fail:
            raise APIConnectionError(request=httpx.Request("POST", "https://api.openai.test/v1/embeddings"))
        return SimpleNamespace(
            data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])],
            usage=SimpleNamespace(prompt_tokens=7, total_tokens=7),
        )


class _StubLangChainEmbeddings:
    def embed_query(self, text: str) -> list[float]:
        return [3.0, 4.0]


def test_hash_embedding_dim_matches_config():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=64))
    result = backend.embed_text("hello world")
    assert isinstance(result.vector, tuple)
    assert len(result.vector) == 64
    assert math.isclose(sum(value * value for value in result.vector), 1.0, rel_tol=1e-9)
    assert result.usage.total_tokens == 0


def test_hash_embedding_is_deterministic():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=32))
    assert backend.embed_text("alpha").vector == backend.embed_text("alpha").vector
    assert backend.embed_text("alpha").vector != backend.embed_text("beta").vector


def test_openai_backend_reports_usage():
    stub = _StubEmbeddings()
    backend = OpenAIEmbeddingBackend(EmbeddingConfig(model="text-embedding-3-small", dim=3), client=SimpleNamespace(embeddings=stub))
    result = backend.embed_text("refund policy")
    assert result.vector == (0.1, 0.2, 0.3)
    assert result.usage.prompt_tokens == 7
    assert stub.calls == [("text-embedding-3-small", "refund policy")]


def test_openai_backend_wraps_sdk_errors():
    backend = OpenAIEmbeddingBackend(EmbeddingConfig(dim=3), client=SimpleNamespace(embeddings=_StubEmbeddings(fail=True)))
    with pytest.raises(EmbeddingError):
        backend.embed_text("anything")


def test_huggingface_backend_normalizes_langchain_vectors():
    backend = HuggingFaceEmbeddingBackend(EmbeddingConfig(dim=2), client=_StubLangChainEmbeddings())
    assert backend.embed_text("text").vector == pytest.approx((0.6, 0.8))
