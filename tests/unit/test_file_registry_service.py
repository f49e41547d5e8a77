from __future__ import annotations

from pathlib import Path

import pytest

from vector_store_manager.application.services.file_registry_service import FileRegistryService
from vector_store_manager.core.errors import NotFoundError, ValidationError
from vector_store_manager.infrastructure.archive.store import ArchiveStore
from vector_store_manager.infrastructure.db.repos.source_file_repo import SourceFileRepo
from vector_store_manager.infrastructure.db.sqlite import initialize_schema


def _service(tmp_path: Path) -> FileRegistryService:
    db_path = tmp_path / "vsm.db"
    initialize_schema(db_path)
    return FileRegistryService(SourceFileRepo(db_path), ArchiveStore(tmp_path / "archive"))


def test_register_file_archives_and_deduplicates(tmp_path: Path) -> None:
    service = _service(tmp_path)
    source = tmp_path / "report.txt"
    source.write_text("quarterly numbers", encoding="utf-8")

    first = service.register_file(source)
    second = service.register_file(source, filename="copy.txt")

    assert first.status == "registered"
    assert second.status == "duplicate"
    assert second.source_file.id == first.source_file.id
    assert first.source_file.id.startswith("file_")
    assert first.source_file.media_type == "text/plain"
    archived = tmp_path / "archive" / service.get_file_path(first.source_file.id)
    assert archived.read_text(encoding="utf-8") == "quarterly numbers"
    assert [f.id for f in service.list_files()] == [first.source_file.id]


def test_register_file_uses_display_name_suffix(tmp_path: Path) -> None:
    service = _service(tmp_path)
    upload = tmp_path / "tmp123"
    upload.write_text("<p>hi</p>", encoding="utf-8")

    result = service.register_file(upload, filename="page.html")

    assert result.source_file.filename == "page.html"
    assert result.source_file.archived_relpath.endswith(".html")


def test_register_missing_file_and_lookup_errors(tmp_path: Path) -> None:
    service = _service(tmp_path)
    with pytest.raises(ValidationError):
        service.register_file(tmp_path / "nope.txt")
    with pytest.raises(NotFoundError):
        service.get_file("file_missing")
    with pytest.raises(NotFoundError):
        service.get_file_path("file_missing")
