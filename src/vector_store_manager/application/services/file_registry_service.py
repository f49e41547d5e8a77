from __future__ import annotations

import logging
import mimetypes
from dataclasses import dataclass
from pathlib import Path

from vector_store_manager.core.errors import NotFoundError, ValidationError
from vector_store_manager.core.hashing import compute_file_digest
from vector_store_manager.core.ids import new_file_id
from vector_store_manager.core.time import now_utc_iso
from vector_store_manager.domain.models.source_file import SourceFile
from vector_store_manager.infrastructure.archive.store import ArchiveStore
from vector_store_manager.infrastructure.db.repos.source_file_repo import SourceFileRepo

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RegisterResult:
    source_file: SourceFile
    status: str


class FileRegistryService:
    """Registers uploaded files in the archive and resolves them for ingestion."""

    def __init__(self, source_file_repo: SourceFileRepo, archive_store: ArchiveStore) -> None:
        self.source_file_repo = source_file_repo
        self.archive_store = archive_store

    def register_file(self, file_path: Path, filename: str | None = None) -> RegisterResult:
        path = file_path.expanduser().resolve()
        if not path.exists() or not path.is_file():
            raise ValidationError(f"File not found: {path}")
        display_name = (filename or path.name).strip()
        if not display_name:
            raise ValidationError("filename is required")

        digest_sha256 = compute_file_digest(path, "sha256")
        existing = self.source_file_repo.get_by_digest(digest_sha256)
        if existing:
            logger.info("File %s already registered as %s", display_name, existing.id)
            return RegisterResult(source_file=existing, status="duplicate")

        media_type = mimetypes.guess_type(display_name)[0] or "application/octet-stream"
        suffix = Path(display_name).suffix.lower()
        archived_path = self.archive_store.store_file_immutable(path, digest_sha256, suffix)

        source_file = SourceFile(
            id=new_file_id(),
            digest_sha256=digest_sha256,
            filename=display_name,
            media_type=media_type,
            archived_relpath=str(archived_path.relative_to(self.archive_store.base_dir)),
            size_bytes=path.stat().st_size,
            created_at=now_utc_iso(),
        )
        self.source_file_repo.insert(source_file)
        logger.info("Registered %s as %s", display_name, source_file.id)
        return RegisterResult(source_file=source_file, status="registered")

    def get_file(self, file_id: str) -> SourceFile:
        source_file = self.source_file_repo.get_by_id(file_id)
        if source_file is None:
            raise NotFoundError(f"file {file_id!r} not found")
        return source_file

    def get_file_path(self, file_id: str) -> str:
        return self.get_file(file_id).archived_relpath

    def list_files(self, limit: int = 100) -> list[SourceFile]:
        return self.source_file_repo.list(limit=limit)
