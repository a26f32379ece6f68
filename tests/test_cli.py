from __future__ import annotations

import json
from pathlib import Path

from groundrag.cli import main
from groundrag.config import Settings

FIXTURE = Path(__file__).parent / "fixtures" / "petstore.json"


def _settings(tmp_path: Path) -> Settings:
    return Settings(environment="test", chroma_persist_dir=tmp_path / "chroma", embedding_dim=16, page_source="directory")


def _run(capsys, argv: list[str], settings: Settings) -> tuple[int, dict]:
    code = main(argv, settings=settings)
    return code, json.loads(capsys.readouterr().out)


def test_ingest_pages_query_and_stats(tmp_path: Path, capsys):
    docs = tmp_path / "docs"
    docs.mkdir()
    (docs / "deploy.md").write_text("Deploy with the release script.", encoding="utf-8")
    settings = _settings(tmp_path)

    code, payload = _run(capsys, ["ingest-pages", "--source-id", str(docs)], settings)
    assert code == 0
    assert payload["pagesProcessed"] == 1
    assert payload["chunksCreated"] == 1

    code, payload = _run(capsys, ["ingest-pages", "--source-id", str(docs)], settings)
    assert payload["pagesSkipped"] == 1

    code, payload = _run(capsys, ["query", "How do I deploy?"], settings)
    assert code == 0
    assert payload["success"] is True
    assert payload["sources"][0]["pageTitle"] == "deploy"
    assert payload["correlationId"]

    code, payload = _run(capsys, ["stats"], settings)
    assert payload["totalVectors"] == 1
    assert payload["totalPages"] == 1
    assert payload["pages"][0]["pageTitle"] == "deploy"
    assert payload["pages"][0]["pageUrl"].startswith("file:")


def test_openapi_upload_list_and_delete(tmp_path: Path, capsys):
    settings = _settings(tmp_path)
    code, payload = _run(capsys, ["ingest-openapi", "shop", "--file", str(FIXTURE)], settings)
    assert code == 0
    assert payload["apiCount"] == 3

    code, payload = _run(capsys, ["list-openapi"], settings)
    assert [document["key"] for document in payload["documents"]] == ["shop"]

    code, payload = _run(capsys, ["api-query", "list pets", "--filter-key", "shop"], settings)
    assert payload["success"] is True

    code, payload = _run(capsys, ["delete-openapi", "--key", "shop"], settings)
    assert code == 0
    assert payload["deletedApis"] == 3


def test_errors_are_reported_as_json(tmp_path: Path, capsys):
    code, payload = _run(capsys, ["ingest-pages", "--source-id", str(tmp_path / "missing")], _settings(tmp_path))
    assert code == 1
    assert payload["success"] is False
