"""Endpoint extraction from OpenAPI/Swagger documents."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Sequence

import httpx

from groundrag.ingestion.errors import IngestionError
from groundrag.ingestion.schema import flatten_schema
from groundrag.metrics.observability import get_logger

HTTP_METHODS = ("get", "post", "put", "patch", "delete", "options", "head")

_logger = get_logger("openapi")


class SpecFormatError(IngestionError):
    """Raised when an API specification cannot be read or is not an object."""


@dataclass(frozen=True)
class EndpointRecord:
    """One HTTP operation as found in the specification."""

    method: str
    path: str
    summary: str = ""
    description: str = ""
    tags: Sequence[str] = ()
    operation_id: str | None = None
    parameters: Sequence[Mapping[str, Any]] = ()
    request_body: Mapping[str, Any] | None = None
    responses: Mapping[str, Any] = field(default_factory=dict)

    @property
    def endpoint(self) -> str:
        return f"{self.method} {self.path}"


def schema_registry(spec: Mapping[str, Any]) -> Mapping[str, Any]:
    components = spec.get("components")
    if isinstance(components, Mapping) and isinstance(components.get("schemas"), Mapping):
        return components["schemas"]
    # Swagger 2.0 keeps shared schemas under "definitions"
    definitions = spec.get("definitions")
    if isinstance(definitions, Mapping):
        return definitions
    return {}


def extract_endpoints(spec: Mapping[str, Any]) -> List[EndpointRecord]:
    paths = spec.get("paths")
    if not isinstance(paths, Mapping):
        return []
    records: List[EndpointRecord] = []
    for path, operations in paths.items():
        if not isinstance(operations, Mapping):
            continue
        shared_parameters = operations.get("parameters") if isinstance(operations.get("parameters"), list) else []
        for method, details in operations.items():
            if method.lower() not in HTTP_METHODS or not isinstance(details, Mapping):
                continue
            parameters = [*shared_parameters, *(details.get("parameters") or [])]
            records.append(
                EndpointRecord(
                    method=method.upper(),
                    path=str(path),
                    summary=str(details.get("summary") or ""),
                    description=str(details.get("description") or ""),
                    tags=tuple(str(tag) for tag in details.get("tags") or []),
                    operation_id=details.get("operationId"),
                    parameters=tuple(p for p in parameters if isinstance(p, Mapping)),
                    request_body=details.get("requestBody") if isinstance(details.get("requestBody"), Mapping) else None,
                    responses=details.get("responses") if isinstance(details.get("responses"), Mapping) else {},
                )
            )
    return records


def _json(value: Any, *, indent: int | None = None) -> str:
    return json.dumps(value, default=str, ensure_ascii=False, indent=indent)


def parameters_to_text(parameters: Sequence[Mapping[str, Any]], registry: Mapping[str, Any] | None = None) -> str:
    lines = []
    for param in parameters:
        parts = [f"- {param.get('name') or param.get('in') or ''}"]
        if param.get("in"):
            parts.append(f"in: {param['in']}")
        if param.get("required"):
            parts.append("(required)")
        if param.get("schema"):
            schema_text = flatten_schema(param["schema"], registry)
            if schema_text:
                parts.append(schema_text)
        if param.get("description"):
            parts.append(f"description: {param['description']}")
        if "example" in param:
            parts.append(f"example: {_json(param['example'])}")
        lines.append(", ".join(parts))
    return "\n".join(lines)


def _content_to_lines(content: Any, registry: Mapping[str, Any] | None) -> List[str]:
    lines: List[str] = []
    if not isinstance(content, Mapping):
        return lines
    for content_type, media in content.items():
        lines.append(f"Content-Type: {content_type}")
        if not isinstance(media, Mapping):
            continue
        if media.get("schema"):
            schema_text = flatten_schema(media["schema"], registry)
            if schema_text:
                lines.append(f"schema:\n{schema_text}")
        if "example" in media:
            lines.append(f"example: {_json(media['example'], indent=2)}")
    return lines


def request_body_to_text(request_body: Mapping[str, Any] | None, registry: Mapping[str, Any] | None = None) -> str:
    if not request_body:
        return ""
    lines: List[str] = []
    if request_body.get("description"):
        lines.append(f"request body description: {request_body['description']}")
    if request_body.get("required"):
        lines.append("request body: required")
    lines.extend(_content_to_lines(request_body.get("content"), registry))
    return "\n".join(lines)


def responses_to_text(responses: Mapping[str, Any] | None, registry: Mapping[str, Any] | None = None) -> str:
    if not responses:
        return ""
    blocks: List[str] = []
    for status_code, response in responses.items():
        lines = [f"status: {status_code}"]
        if isinstance(response, Mapping):
            if response.get("description"):
                lines.append(f"description: {response['description']}")
            lines.extend(_content_to_lines(response.get("content"), registry))
        blocks.append("\n".join(lines))
    return "\n".join(blocks)


def format_endpoint_text(
    record: EndpointRecord,
    info: Mapping[str, Any] | None = None,
    registry: Mapping[str, Any] | None = None,
) -> str:
    """Build the text that represents ``record`` in the vector index."""

    info = info or {}
    parts = [record.endpoint]
    if record.summary:
        parts.append(f"summary: {record.summary}")
    if record.description:
        parts.append(f"description: {record.description}")
    if record.tags:
        parts.append(f"tags: {', '.join(record.tags)}")
    if info.get("title"):
        parts.append(f"document: {info['title']}")
    if info.get("version"):
        parts.append(f"version: {info['version']}")
    parameters_text = parameters_to_text(record.parameters, registry)
    if parameters_text:
        parts.append(f"\nparameters:\n{parameters_text}")
    request_body_text = request_body_to_text(record.request_body, registry)
    if request_body_text:
        parts.append(f"\nrequest body:\n{request_body_text}")
    responses_text = responses_to_text(record.responses, registry)
    if responses_text:
        parts.append(f"\nresponses:\n{responses_text}")
    return "\n".join(parts)


def _ensure_object(data: Any, origin: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise SpecFormatError(f"API specification from {origin} is not a JSON object")
    return data


def fetch_openapi_spec(url: str, *, client: httpx.Client | None = None, timeout: float = 30.0) -> Dict[str, Any]:
    """Download a JSON API specification."""

    _logger.info("openapi.fetch", url=url)
    owns_client = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        response = http.get(url)
        if response.status_code >= 400:
            raise SpecFormatError(f"Failed to fetch API specification: {response.status_code} {url}")
        content_type = response.headers.get("content-type", "")
        if "json" not in content_type:
            _logger.warning("openapi.unexpected_content_type", url=url, content_type=content_type)
        try:
            data = response.json()
        except ValueError as exc:
            raise SpecFormatError(f"API specification at {url} is not valid JSON") from exc
    except httpx.HTTPError as exc:
        raise SpecFormatError(f"Failed to fetch API specification from {url}: {exc}") from exc
    finally:
        if owns_client:
            http.close()
    spec = _ensure_object(data, url)
    _logger.info("openapi.fetched", url=url, path_count=len(spec.get("paths") or {}))
    return spec


def load_openapi_file(path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise SpecFormatError(f"Failed to read API specification {path}: {exc}") from exc
    return _ensure_object(data, str(path))
