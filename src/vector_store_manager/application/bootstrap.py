from __future__ import annotations

import logging
from dataclasses import dataclass

from vector_store_manager.application.ports import EmbeddingService, TextSplitter, VectorIndex
from vector_store_manager.application.services.embedding_pipeline import EmbeddingPipeline
from vector_store_manager.application.services.file_registry_service import FileRegistryService
from vector_store_manager.application.services.health_service import HealthService
from vector_store_manager.application.services.project_service import ProjectService
from vector_store_manager.application.services.retrieval_service import RetrievalService
from vector_store_manager.application.services.vector_store_file_service import VectorStoreFileService
from vector_store_manager.application.services.vector_store_service import VectorStoreService
from vector_store_manager.core.config import AppConfig
from vector_store_manager.infrastructure.archive.store import ArchiveStore
from vector_store_manager.infrastructure.db.repos.collection_metadata_repo import CollectionMetadataRepo
from vector_store_manager.infrastructure.db.repos.collection_repo import CollectionRepo
from vector_store_manager.infrastructure.db.repos.source_file_repo import SourceFileRepo
from vector_store_manager.infrastructure.db.repos.vector_store_file_repo import VectorStoreFileRepo
from vector_store_manager.infrastructure.vector.embeddings import OllamaEmbedder, SentenceTransformerEmbedder
from vector_store_manager.infrastructure.vector.qdrant_index import QdrantVectorIndex
from vector_store_manager.infrastructure.vector.splitting import SplitterRegistry

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class Services:
    config: AppConfig
    project: ProjectService
    file_registry: FileRegistryService
    pipeline: EmbeddingPipeline
    vector_stores: VectorStoreService
    vector_store_files: VectorStoreFileService
    retrieval: RetrievalService
    health: HealthService
    vector_index: VectorIndex

    def shutdown(self) -> None:
        worker = self.vector_store_files._worker
        if worker is not None:
            worker.shutdown()


def build_embedding_service(config: AppConfig) -> EmbeddingService:
    if config.embedding_backend == "sentence-transformers":
        return SentenceTransformerEmbedder()
    return OllamaEmbedder(host=config.ollama_host)


def build_vector_index(config: AppConfig) -> VectorIndex:
    return QdrantVectorIndex(
        storage_path=config.paths.qdrant_dir,
        url=config.qdrant_url,
        api_key=config.qdrant_api_key,
        timeout_seconds=config.qdrant_timeout_seconds,
    )


def build_services(
    config: AppConfig,
    *,
    vector_index: VectorIndex | None = None,
    embedding_service: EmbeddingService | None = None,
    splitter: TextSplitter | None = None,
) -> Services:
    """Wire every service from one config value; collaborators may be swapped in."""
    paths = config.paths
    project = ProjectService(paths)
    project.init_project()

    if vector_index is None:
        vector_index = build_vector_index(config)
    if embedding_service is None:
        embedding_service = build_embedding_service(config)
    if splitter is None:
        splitter = SplitterRegistry(config.splitter_extensions)

    archive_store = ArchiveStore(paths.archive_dir)
    collection_repo = CollectionRepo(paths.db_path)
    file_repo = VectorStoreFileRepo(paths.db_path)

    file_registry = FileRegistryService(SourceFileRepo(paths.db_path), archive_store)
    pipeline = EmbeddingPipeline(
        blob_store=archive_store,
        splitter=splitter,
        embedding_service=embedding_service,
        vector_index=vector_index,
        chars_per_token=config.chars_per_token,
    )
    file_service = VectorStoreFileService(
        db_path=paths.db_path,
        collection_repo=collection_repo,
        file_repo=file_repo,
        file_registry=file_registry,
        pipeline=pipeline,
    )
    vector_store_service = VectorStoreService(
        db_path=paths.db_path,
        collection_repo=collection_repo,
        metadata_repo=CollectionMetadataRepo(paths.db_path),
        file_repo=file_repo,
        vector_index=vector_index,
        embedding_service=embedding_service,
        file_registry=file_registry,
        file_service=file_service,
        embedding_model=config.embedding_model,
    )
    retrieval = RetrievalService(
        pipeline,
        embedding_model=config.embedding_model,
        on_search=vector_store_service.touch,
    )
    logger.debug(
        "Services ready (embedding=%s/%s, index=%s)",
        config.embedding_backend,
        config.embedding_model,
        getattr(vector_index, "backend_name", type(vector_index).__name__),
    )
    return Services(
        config=config,
        project=project,
        file_registry=file_registry,
        pipeline=pipeline,
        vector_stores=vector_store_service,
        vector_store_files=file_service,
        retrieval=retrieval,
        health=HealthService(paths.db_path, paths.archive_dir, vector_index),
        vector_index=vector_index,
    )
