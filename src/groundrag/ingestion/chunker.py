"""Fixed-size overlapping window splitter."""

from __future__ import annotations

from typing import Any, List

from langchain_text_splitters import TextSplitter

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200


class FixedWindowTextSplitter(TextSplitter):
    """Split text into windows of ``chunk_size`` characters overlapping by ``chunk_overlap``.

    Windows start at ``0, W-O, 2(W-O), ...`` and stop as soon as one reaches the
    end of the text, so the last window may be shorter than ``W``. Every
    character is covered by at least one window.
    """

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        **kwargs: Any,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        if chunk_overlap < 0 or chunk_overlap >= chunk_size:
            raise ValueError(
                f"chunk_overlap must be in [0, chunk_size), got {chunk_overlap} for size {chunk_size}"
            )
        kwargs.setdefault("strip_whitespace", False)
        super().__init__(chunk_size=chunk_size, chunk_overlap=chunk_overlap, **kwargs)

    def split_text(self, text: str) -> List[str]:
        size = self._chunk_size
        step = size - self._chunk_overlap
        chunks: List[str] = []
        start = 0
        while start < len(text):
            end = min(start + size, len(text))
            chunks.append(text[start:end])
            if end >= len(text):
                break
            start += step
        return chunks
