from __future__ import annotations

import logging
from typing import Callable

from vector_store_manager.application.services.embedding_pipeline import EmbeddingPipeline
from vector_store_manager.core.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_NUM_DOCUMENTS = 10
MAX_NUM_DOCUMENTS = 100


def normalize_num_documents(num_documents: int | None) -> int:
    value = 0 if num_documents is None else int(num_documents)
    if value < 0:
        raise ValidationError("num_documents must be non-negative")
    if value == 0:
        return DEFAULT_NUM_DOCUMENTS
    return min(value, MAX_NUM_DOCUMENTS)


class RetrievalService:
    """Query-time search for internal callers; results are returned as the index ranks them."""

    def __init__(
        self,
        pipeline: EmbeddingPipeline,
        *,
        embedding_model: str,
        on_search: Callable[[str], None] | None = None,
    ) -> None:
        self.pipeline = pipeline
        self.embedding_model = embedding_model
        self.on_search = on_search

    def search_vector_store(
        self,
        vector_store_id: str,
        query: str,
        num_documents: int | None = 0,
        *,
        cancellation_check: Callable[[], bool] | None = None,
    ) -> list[str]:
        if not vector_store_id:
            raise ValidationError("vector store id is required")
        if not query:
            raise ValidationError("query is required")
        k = normalize_num_documents(num_documents)
        results = self.pipeline.search(
            collection_name=vector_store_id,
            model_name=self.embedding_model,
            query=query,
            num_documents=k,
            cancellation_check=cancellation_check,
        )
        if self.on_search is not None:
            self.on_search(vector_store_id)
        return results
