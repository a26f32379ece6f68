"""Embedding backends and vector index."""

from .service import (
    EmbeddingBackend,
    EmbeddingConfig,
    EmbeddingError,
    EmbeddingResult,
    HashEmbeddingBackend,
    HuggingFaceEmbeddingBackend,
    OpenAIEmbeddingBackend,
)
from .store import ChromaVectorIndex, VectorIndex, VectorIndexError

__all__ = [
    "ChromaVectorIndex",
    "EmbeddingBackend",
    "EmbeddingConfig",
    "EmbeddingError",
    "EmbeddingResult",
    "HashEmbeddingBackend",
    "HuggingFaceEmbeddingBackend",
    "OpenAIEmbeddingBackend",
    "VectorIndex",
    "VectorIndexError",
]
