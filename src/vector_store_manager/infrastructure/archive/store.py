from __future__ import annotations

import logging
import shutil
from pathlib import Path

from vector_store_manager.core.errors import IngestionError
from vector_store_manager.core.files import ensure_directory, make_read_only, safe_copy_atomic

logger = logging.getLogger(__name__)


class ArchiveStore:
    """Content-addressed local blob store backing uploaded source files."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = base_dir

    def ensure_archive_layout(self) -> None:
        ensure_directory(self.base_dir)
        ensure_directory(self.base_dir / "sha256")

    def archive_relpath_for_digest(self, digest_sha256: str, suffix: str = "") -> Path:
        shard_a = digest_sha256[:2]
        shard_b = digest_sha256[2:4]
        name = f"{digest_sha256}{suffix}"
        return Path("sha256") / shard_a / shard_b / name

    def store_file_immutable(self, src: Path, digest_sha256: str, suffix: str = "") -> Path:
        self.ensure_archive_layout()
        dst = self.base_dir / self.archive_relpath_for_digest(digest_sha256, suffix)
        ensure_directory(dst.parent)

        if not dst.exists():
            safe_copy_atomic(src, dst)
            make_read_only(dst)

        return dst

    def download(self, path: str, destination: Path) -> None:
        source = (self.base_dir / path).resolve()
        base = self.base_dir.resolve()
        if base not in source.parents:
            raise IngestionError(f"download: blob path escapes the archive: {path}")
        if not source.is_file():
            raise IngestionError(f"download: blob not found: {path}")
        logger.debug("Copying blob %s to %s", source, destination)
        try:
            with source.open("rb") as src, destination.open("wb") as dst:
                shutil.copyfileobj(src, dst)
        except OSError as exc:
            raise IngestionError(f"download {path}: {exc}") from exc
