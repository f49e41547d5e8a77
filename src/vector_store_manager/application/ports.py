from __future__ import annotations

from pathlib import Path
from typing import Protocol

from vector_store_manager.domain.models.source_file import SourceFile


class FileRegistry(Protocol):
    def get_file(self, file_id: str) -> SourceFile:
        """Return the registered file or raise NotFoundError."""

    def get_file_path(self, file_id: str) -> str:
        """Return the blob path of a registered file or raise NotFoundError."""


class BlobStore(Protocol):
    def download(self, path: str, destination: Path) -> None:
        ...


class VectorIndex(Protocol):
    def create_collection(self, name: str, dim: int, alias: str | None = None) -> int:
        ...

    def delete_collection(self, name: str) -> None:
        """Deleting a collection that does not exist is not an error."""

    def rename_collection(self, old_alias: str, new_alias: str) -> None:
        ...

    def insert_documents(
        self,
        name: str,
        file_ids: list[str],
        texts: list[str],
        vectors: list[list[float]],
    ) -> None:
        """Insert positionally aligned chunks; all three lists have equal length."""

    def delete_documents(self, name: str, file_id: str) -> None:
        """Deleting documents of a file with no chunks is not an error."""

    def search(self, name: str, vector: list[float], k: int) -> list[str]:
        ...

    def list_collections(self) -> list[str]:
        ...


class EmbeddingService(Protocol):
    def ensure_model(self, name: str) -> None:
        ...

    def embed(self, model: str, text: str) -> list[float]:
        ...

    def dimension(self, model: str) -> int:
        ...


class TextSplitter(Protocol):
    def split(self, content: Path, file_type: str, chunk_size_chars: int, overlap_chars: int) -> list[str]:
        ...
