from pathlib import Path

import pytest

from vector_store_manager.core.errors import IngestionError
from vector_store_manager.infrastructure.archive.store import ArchiveStore


def test_archive_relpath_uses_sha256_sharding() -> None:
    store = ArchiveStore(Path("/tmp/archive"))
    digest = "a" * 64
    rel = store.archive_relpath_for_digest(digest, ".pdf")
    assert str(rel) == "sha256/aa/aa/" + ("a" * 64) + ".pdf"


def test_download_copies_archived_blob(tmp_path: Path) -> None:
    store = ArchiveStore(tmp_path / "archive")
    source = tmp_path / "source.txt"
    source.write_text("hello", encoding="utf-8")
    stored = store.store_file_immutable(source, "b" * 64, ".txt")

    target = tmp_path / "copy.txt"
    store.download(str(stored.relative_to(store.base_dir)), target)

    assert target.read_text(encoding="utf-8") == "hello"


def test_download_rejects_missing_and_escaping_paths(tmp_path: Path) -> None:
    store = ArchiveStore(tmp_path / "archive")
    store.ensure_archive_layout()
    (tmp_path / "secret.txt").write_text("x", encoding="utf-8")

    with pytest.raises(IngestionError, match="not found"):
        store.download("sha256/00/00/missing.txt", tmp_path / "out")
    with pytest.raises(IngestionError, match="escapes"):
        store.download("../secret.txt", tmp_path / "out")
