"""Command line entry point for ingestion and grounded question answering."""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Sequence
from uuid import uuid4

from pydantic import BaseModel, TypeAdapter, ValidationError

from groundrag.app import AppDependencies, build_dependencies
from groundrag.config import Settings, get_settings
from groundrag.embeddings import EmbeddingError, VectorIndexError
from groundrag.ingestion import DirectoryPageSource, IngestionError, load_openapi_file
from groundrag.metrics.observability import bind_correlation_id, clear_correlation_id, get_correlation_id, get_logger
from groundrag.schemas import (
    ApiIngestionResponse,
    ConversationTurnModel,
    IndexStatsResponse,
    PageIngestionRequest,
    PageIngestionResponse,
    PageStats,
    QueryRequest,
)

_HISTORY_ADAPTER = TypeAdapter(List[ConversationTurnModel])


def _emit(model: BaseModel | dict) -> None:
    payload = model if isinstance(model, dict) else model.model_dump(by_alias=True, exclude_none=True)
    payload = {**payload, "correlationId": get_correlation_id()}
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def _load_history(path: Path | None) -> List[ConversationTurnModel] | None:
    if path is None:
        return None
    return _HISTORY_ADAPTER.validate_json(path.read_text(encoding="utf-8"))


def _ingest_pages(deps: AppDependencies, args: argparse.Namespace) -> int:
    request = PageIngestionRequest(source_id=args.source_id, force=args.force)
    report = deps.page_ingestion.ingest(request.source_id, force=request.force)
    _emit(
        PageIngestionResponse(
            pages_processed=report.pages_processed,
            pages_skipped=report.pages_skipped,
            chunks_created=report.chunks_created,
            pages_failed=report.pages_failed,
        )
    )
    return 0 if report.pages_failed == 0 else 1


def _ingest_openapi(deps: AppDependencies, args: argparse.Namespace) -> int:
    if args.url:
        report = deps.api_ingestion.upload_from_url(args.key, args.url)
    else:
        report = deps.api_ingestion.upload(args.key, load_openapi_file(args.file))
    _emit(
        ApiIngestionResponse(
            success=report.success,
            message=report.message,
            document_id=report.document.document_id if report.document else None,
            document_key=args.key,
            api_count=report.api_count,
        )
    )
    return 0 if report.success else 1


def _delete_openapi(deps: AppDependencies, args: argparse.Namespace) -> int:
    document_id = args.document_id
    if args.key:
        record = next((doc for doc in deps.api_ingestion.documents() if doc.key == args.key), None)
        document_id = record.document_id if record else None
    if not document_id:
        _emit(ApiIngestionResponse(success=False, message=f"API document not found: {args.key}", document_key=args.key))
        return 1
    report = deps.api_ingestion.delete_document(document_id)
    _emit({"success": report.success, "message": report.message, "deletedApis": report.deleted_apis})
    return 0 if report.success else 1


def _list_openapi(deps: AppDependencies, args: argparse.Namespace) -> int:
    documents = [
        {
            "documentId": record.document_id,
            "key": record.key,
            "title": record.title,
            "version": record.version,
            "status": record.status.value,
            "apiCount": record.api_count,
            "errorMessage": record.error_message,
            "lastIndexedAt": record.last_indexed_at,
        }
        for record in deps.api_ingestion.documents()
    ]
    _emit({"documents": documents})
    return 0


def _query(deps: AppDependencies, args: argparse.Namespace) -> int:
    request = QueryRequest(
        question=args.question,
        conversation_history=_load_history(args.history),
        filter_key=args.filter_key,
    )
    service = deps.api_queries if args.command == "api-query" else deps.document_queries
    response = service.answer(request.question, history=request.history(), filter_key=request.filter_key)
    _emit(response.to_payload())
    return 0 if response.success else 1


def _stats(deps: AppDependencies, args: argparse.Namespace) -> int:
    stats = deps.page_ingestion.stats()
    pages = [
        PageStats(source_id=page.source_id, page_title=page.title, page_url=page.url, chunk_count=page.chunk_count)
        for page in stats.pages
    ]
    _emit(
        IndexStatsResponse(
            collection=stats.collection,
            total_vectors=stats.total_vectors,
            total_pages=len(pages),
            pages=pages,
        )
    )
    return 0


def parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="groundrag", description="Grounded question answering over indexed documentation.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    pages = subparsers.add_parser("ingest-pages", help="Chunk and index the pages of a source")
    pages.add_argument("--source-id", default=None, help="Notion database id or local directory (defaults to settings)")
    pages.add_argument("--directory", action="store_true", help="Treat the source id as a local directory")
    pages.add_argument("--force", action="store_true", help="Re-index pages that are already present")
    pages.set_defaults(handler=_ingest_pages)

    upload = subparsers.add_parser("ingest-openapi", help="Index an OpenAPI/Swagger JSON document under a key")
    upload.add_argument("key", help="Stable key; uploading again under the same key replaces the document")
    origin = upload.add_mutually_exclusive_group(required=True)
    origin.add_argument("--url", default=None, help="URL of the JSON specification")
    origin.add_argument("--file", type=Path, default=None, help="Path to the JSON specification")
    upload.set_defaults(handler=_ingest_openapi)

    delete = subparsers.add_parser("delete-openapi", help="Remove an indexed API document")
    target = delete.add_mutually_exclusive_group(required=True)
    target.add_argument("--key", default=None)
    target.add_argument("--document-id", default=None)
    delete.set_defaults(handler=_delete_openapi)

    listing = subparsers.add_parser("list-openapi", help="List uploaded API documents")
    listing.set_defaults(handler=_list_openapi)

    for name, help_text, filter_help in (
        ("query", "Answer a question from the indexed pages", "Restrict retrieval to one page id"),
        ("api-query", "Answer a question from the indexed API documents", "Restrict retrieval to one API document key"),
    ):
        query = subparsers.add_parser(name, help=help_text)
        query.add_argument("question")
        query.add_argument("--history", type=Path, default=None, help="JSON file with prior turns [{role, content}]")
        query.add_argument("--filter-key", default=None, help=filter_help)
        query.set_defaults(handler=_query)

    stats = subparsers.add_parser("stats", help="Show chunk counts of the page collection")
    stats.set_defaults(handler=_stats)
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None, *, settings: Settings | None = None) -> int:
    args = parse_args(sys.argv[1:] if argv is None else argv)
    settings = settings or get_settings()
    logger = get_logger("cli")
    bind_correlation_id(uuid4().hex)
    try:
        page_source = DirectoryPageSource() if getattr(args, "directory", False) else None
        deps = build_dependencies(settings, page_source=page_source)
        return args.handler(deps, args)
    except (IngestionError, EmbeddingError, VectorIndexError, ValidationError, OSError) as exc:
        logger.error("cli.failed", command=args.command, detail=str(exc))
        _emit({"success": False, "message": str(exc)})
        return 1
    finally:
        clear_correlation_id()


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    sys.exit(main())
