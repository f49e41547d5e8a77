from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Callable

from vector_store_manager.application.ports import BlobStore, EmbeddingService, TextSplitter, VectorIndex
from vector_store_manager.core.config import DEFAULT_CHARS_PER_TOKEN
from vector_store_manager.core.errors import IngestionCancelledError, IngestionError, VSMError

logger = logging.getLogger(__name__)


class EmbeddingPipeline:
    """Download, split, embed and index one file; embed-and-search for queries.

    Chunks reach the index in one batched insert after every chunk has been
    embedded, so a failure part-way leaves the index untouched.
    """

    def __init__(
        self,
        *,
        blob_store: BlobStore,
        splitter: TextSplitter,
        embedding_service: EmbeddingService,
        vector_index: VectorIndex,
        chars_per_token: int = DEFAULT_CHARS_PER_TOKEN,
        scratch_dir: Path | None = None,
    ) -> None:
        self.blob_store = blob_store
        self.splitter = splitter
        self.embedding_service = embedding_service
        self.vector_index = vector_index
        self.chars_per_token = chars_per_token
        self.scratch_dir = scratch_dir

    def add_file(
        self,
        *,
        collection_name: str,
        model_name: str,
        file_id: str,
        file_name: str,
        source_path: str,
        max_chunk_size_tokens: int,
        chunk_overlap_tokens: int,
        cancellation_check: Callable[[], bool] | None = None,
    ) -> list[str]:
        """Index ``file_id`` into ``collection_name`` and return the inserted chunk texts."""
        self._raise_if_cancelled(cancellation_check, f"add file {file_id}")

        fd, scratch_name = tempfile.mkstemp(
            prefix="vsm-file-",
            dir=str(self.scratch_dir) if self.scratch_dir else None,
        )
        os.close(fd)
        scratch = Path(scratch_name)
        try:
            logger.info("Downloading %s from %s", file_id, source_path)
            try:
                self.blob_store.download(source_path, scratch)
            except VSMError:
                raise
            except Exception as exc:
                raise IngestionError(f"download {source_path}: {exc}") from exc

            chunks = self.splitter.split(
                scratch,
                Path(file_name).suffix.lower(),
                max_chunk_size_tokens * self.chars_per_token,
                chunk_overlap_tokens * self.chars_per_token,
            )
            logger.info("Split %s into %d chunks", file_name, len(chunks))

            self.embedding_service.ensure_model(model_name)
            expected_dim = self.embedding_service.dimension(model_name)

            texts: list[str] = []
            file_ids: list[str] = []
            vectors: list[list[float]] = []
            for idx, chunk in enumerate(chunks):
                self._raise_if_cancelled(cancellation_check, f"add file {file_id}")
                vector = self.embedding_service.embed(model_name, chunk)
                if len(vector) != expected_dim:
                    raise IngestionError(
                        f"embedding of chunk {idx} of {file_id} has dimension {len(vector)}, "
                        f"expected {expected_dim}"
                    )
                texts.append(chunk)
                file_ids.append(file_id)
                vectors.append(vector)

            self._raise_if_cancelled(cancellation_check, f"add file {file_id}")
            self.vector_index.insert_documents(collection_name, file_ids, texts, vectors)
            return texts
        finally:
            try:
                scratch.unlink(missing_ok=True)
            except OSError as exc:
                logger.warning("Failed to remove scratch file %s: %s", scratch, exc)

    def delete_file(self, collection_name: str, file_id: str) -> None:
        self.vector_index.delete_documents(collection_name, file_id)

    def search(
        self,
        *,
        collection_name: str,
        model_name: str,
        query: str,
        num_documents: int,
        cancellation_check: Callable[[], bool] | None = None,
    ) -> list[str]:
        self.embedding_service.ensure_model(model_name)
        self._raise_if_cancelled(cancellation_check, "search")
        vector = self.embedding_service.embed(model_name, query)
        self._raise_if_cancelled(cancellation_check, "search")
        results = self.vector_index.search(collection_name, vector, num_documents)
        logger.debug("search result(%s): %d hits", query, len(results))
        return results

    @staticmethod
    def _raise_if_cancelled(cancellation_check: Callable[[], bool] | None, what: str) -> None:
        if cancellation_check and cancellation_check():
            raise IngestionCancelledError(f"{what}: cancelled")
