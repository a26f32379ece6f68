"""Page sources feeding the text ingestion pipeline."""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Protocol, Sequence
from uuid import NAMESPACE_URL, uuid5

import httpx
from langchain_community.document_loaders import BSHTMLLoader, Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_community.document_loaders.base import BaseLoader

from groundrag.ingestion.errors import IngestionError
from groundrag.metrics.observability import get_logger

NOTION_API_URL = "https://api.notion.com/v1"

TEXT_BLOCK_TYPES = (
    "paragraph",
    "heading_1",
    "heading_2",
    "heading_3",
    "bulleted_list_item",
    "numbered_list_item",
    "to_do",
    "toggle",
    "quote",
    "callout",
    "code",
)


class SourceError(IngestionError):
    """Raised when a page source cannot be listed or read."""


class UnsupportedFileTypeError(SourceError):
    """Raised when a file extension has no registered loader."""


@dataclass(frozen=True)
class SourcePage:
    """A page as listed by a source, before its text is loaded."""

    page_id: str
    title: str
    url: str
    metadata: Mapping[str, Any] = field(default_factory=dict)


class PageSource(Protocol):
    """Lists the pages of a source and loads their plain text on demand."""

    def list_pages(self, source_id: str) -> Sequence[SourcePage]:
        ...

    def load_text(self, page: SourcePage) -> str:
        ...


def _normalize_text(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"[ \t]+", " ", normalized)
    normalized = re.sub(r"\n{3,}", "\n\n", normalized)
    return normalized.strip()


def _plain_text(rich_text: Any) -> str:
    if not isinstance(rich_text, list):
        return ""
    return "".join(str(part.get("plain_text") or "") for part in rich_text if isinstance(part, Mapping))


def page_title(page: Mapping[str, Any]) -> str:
    properties = page.get("properties")
    if isinstance(properties, Mapping):
        for prop in properties.values():
            if isinstance(prop, Mapping) and prop.get("type") == "title":
                title = _plain_text(prop.get("title"))
                if title:
                    return title
    return "Untitled"


def block_text(block: Mapping[str, Any]) -> str:
    block_type = block.get("type")
    if block_type not in TEXT_BLOCK_TYPES:
        return ""
    content = block.get(block_type)
    if not isinstance(content, Mapping):
        return ""
    return _plain_text(content.get("rich_text"))


class NotionPageSource:
    """Pages of a Notion database read through the public REST API.

    Block children are fetched recursively so nested toggles and list items
    contribute their text in document order.
    """

    def __init__(
        self,
        *,
        api_key: str,
        notion_version: str = "2022-06-28",
        base_url: str = NOTION_API_URL,
        timeout_seconds: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self._configured = bool(api_key) or client is not None
        self._client = client or httpx.Client(
            base_url=base_url,
            timeout=timeout_seconds,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Notion-Version": notion_version,
                "Content-Type": "application/json",
            },
        )
        self._logger = get_logger("notion")

    def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        if not self._configured:
            raise SourceError("A Notion API key is required")
        try:
            response = self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise SourceError(f"Notion request failed: {exc}") from exc
        if response.status_code >= 400:
            raise SourceError(f"Notion request failed: {response.status_code} {response.text}")
        return response.json()

    def list_pages(self, source_id: str) -> List[SourcePage]:
        pages: List[SourcePage] = []
        body: Dict[str, Any] = {}
        while True:
            data = self._request("POST", f"/databases/{source_id}/query", json=body)
            for result in data.get("results") or []:
                pages.append(
                    SourcePage(
                        page_id=str(result["id"]),
                        title=page_title(result),
                        url=str(result.get("url") or ""),
                        metadata={"last_edited_time": result.get("last_edited_time")},
                    )
                )
            if not data.get("has_more") or not data.get("next_cursor"):
                break
            body = {"start_cursor": data["next_cursor"]}
        self._logger.info("notion.pages_listed", database_id=source_id, page_count=len(pages))
        return pages

    def iter_blocks(self, block_id: str) -> Iterator[Mapping[str, Any]]:
        params: Dict[str, Any] = {}
        while True:
            data = self._request("GET", f"/blocks/{block_id}/children", params=params)
            for block in data.get("results") or []:
                yield block
                if block.get("has_children"):
                    yield from self.iter_blocks(str(block["id"]))
            if not data.get("has_more") or not data.get("next_cursor"):
                return
            params = {"start_cursor": data["next_cursor"]}

    def load_text(self, page: SourcePage) -> str:
        parts = [text for text in (block_text(block) for block in self.iter_blocks(page.page_id)) if text]
        return "\n\n".join(parts)


class DirectoryPageSource:
    """Files below a local directory, one page per file."""

    _LOADERS: Mapping[str, type[BaseLoader]] = {
        ".pdf": PyPDFLoader,
        ".docx": Docx2txtLoader,
        ".txt": TextLoader,
        ".md": TextLoader,
        ".html": BSHTMLLoader,
        ".htm": BSHTMLLoader,
    }

    def __init__(self, root: Path | None = None, *, encoding: str = "utf-8") -> None:
        self._root = root
        self._encoding = encoding
        self._logger = get_logger("ingestion")

    def _directory(self, source_id: str) -> Path:
        directory = Path(source_id)
        if self._root is not None and not directory.is_absolute():
            directory = self._root / directory
        if not directory.is_dir():
            raise SourceError(f"Source directory not found: {directory}")
        return directory

    def list_pages(self, source_id: str) -> List[SourcePage]:
        directory = self._directory(source_id)
        pages = []
        for path in sorted(directory.rglob("*")):
            if not path.is_file() or path.suffix.lower() not in self._LOADERS:
                continue
            resolved = path.resolve()
            pages.append(
                SourcePage(
                    page_id=uuid5(NAMESPACE_URL, str(resolved)).hex,
                    title=path.stem,
                    url=resolved.as_uri(),
                    metadata={"path": str(resolved)},
                )
            )
        self._logger.info("directory.pages_listed", directory=str(directory), page_count=len(pages))
        return pages

    def _build_loader(self, path: Path) -> BaseLoader:
        loader_cls = self._LOADERS.get(path.suffix.lower())
        if loader_cls is None:
            raise UnsupportedFileTypeError(f"Unsupported document type: {path.suffix or '<none>'}")
        if loader_cls is TextLoader:
            return loader_cls(str(path), encoding=self._encoding)
        return loader_cls(str(path))

    def load_text(self, page: SourcePage) -> str:
        path = Path(str(page.metadata.get("path") or ""))
        loader = self._build_loader(path)
        try:
            documents = loader.load()
        except Exception as exc:  # pragma: no cover - loader specific errors
            raise SourceError(f"Failed to load {path}: {exc}") from exc
        return _normalize_text("\n\n".join(document.page_content for document in documents))
