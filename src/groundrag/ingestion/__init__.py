"""Ingestion pipeline for documentation pages and API specifications."""

from .chunker import FixedWindowTextSplitter
from .errors import IngestionError
from .openapi import SpecFormatError, extract_endpoints, fetch_openapi_spec, load_openapi_file
from .schema import flatten_schema
from .service import (
    ApiDocumentRegistry,
    ApiIngestionReport,
    ApiSpecIngestionService,
    DeletionReport,
    IndexStats,
    InMemoryApiDocumentRegistry,
    JsonFileApiDocumentRegistry,
    PageIngestionReport,
    PageIngestionService,
    PageSummary,
)
from .sources import DirectoryPageSource, NotionPageSource, PageSource, SourceError, SourcePage

__all__ = [
    "ApiDocumentRegistry",
    "ApiIngestionReport",
    "ApiSpecIngestionService",
    "DeletionReport",
    "DirectoryPageSource",
    "FixedWindowTextSplitter",
    "IndexStats",
    "InMemoryApiDocumentRegistry",
    "IngestionError",
    "JsonFileApiDocumentRegistry",
    "NotionPageSource",
    "PageIngestionReport",
    "PageIngestionService",
    "PageSource",
    "PageSummary",
    "SourceError",
    "SourcePage",
    "SpecFormatError",
    "extract_endpoints",
    "fetch_openapi_spec",
    "flatten_schema",
    "load_openapi_file",
]
