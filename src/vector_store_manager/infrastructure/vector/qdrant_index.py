from __future__ import annotations

import logging
import os
from pathlib import Path

from vector_store_manager.core.errors import InternalError, ValidationError
from vector_store_manager.core.ids import new_uuid, stable_int64

logger = logging.getLogger(__name__)

IN_MEMORY_LOCATION = ":memory:"

PAYLOAD_FILE_ID = "file_id"
PAYLOAD_TEXT = "text"


class QdrantVectorIndex:
    """Vector index backed by one Qdrant collection per vector store.

    The collection is named after the vector store id; a collection alias
    carries the human-facing name so renames never move vectors.
    """

    def __init__(
        self,
        *,
        storage_path: Path | None = None,
        url: str | None = None,
        api_key: str | None = None,
        timeout_seconds: float = 10.0,
        location: str | None = None,
    ) -> None:
        self.storage_path = storage_path
        self.server_url = url.strip() if url and url.strip() else None
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self.location = location
        if self.server_url:
            self.backend_name = "qdrant-server"
        elif location == IN_MEMORY_LOCATION:
            self.backend_name = "qdrant-memory"
        else:
            self.backend_name = "qdrant-local"
        self._client = None
        self._models = None

    def create_collection(self, name: str, dim: int, alias: str | None = None) -> int:
        if dim <= 0:
            raise ValidationError("vector dimension must be positive")
        client, models = self._client_and_models()
        try:
            client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(size=dim, distance=models.Distance.COSINE),
            )
            if alias:
                client.update_collection_aliases(
                    change_aliases_operations=[
                        models.CreateAliasOperation(
                            create_alias=models.CreateAlias(collection_name=name, alias_name=alias)
                        )
                    ]
                )
        except Exception as exc:
            raise InternalError(f"create collection {name!r}: {exc}") from exc
        logger.info("Created index collection %s (dim=%s, alias=%s)", name, dim, alias)
        return stable_int64(name)

    def delete_collection(self, name: str) -> None:
        client, _ = self._client_and_models()
        try:
            if not client.collection_exists(collection_name=name):
                logger.info("Index collection %s already absent", name)
                return
            client.delete_collection(collection_name=name)
        except Exception as exc:
            raise InternalError(f"delete collection {name!r}: {exc}") from exc
        logger.info("Deleted index collection %s", name)

    def rename_collection(self, old_alias: str, new_alias: str) -> None:
        if old_alias == new_alias:
            return
        client, models = self._client_and_models()
        try:
            targets = {
                item.alias_name: item.collection_name
                for item in client.get_aliases().aliases
            }
            collection_name = targets.get(old_alias)
            if collection_name is None:
                raise InternalError(f"rename collection: alias {old_alias!r} does not exist")
            client.update_collection_aliases(
                change_aliases_operations=[
                    models.DeleteAliasOperation(delete_alias=models.DeleteAlias(alias_name=old_alias)),
                    models.CreateAliasOperation(
                        create_alias=models.CreateAlias(
                            collection_name=collection_name,
                            alias_name=new_alias,
                        )
                    ),
                ]
            )
        except InternalError:
            raise
        except Exception as exc:
            raise InternalError(f"rename collection {old_alias!r} -> {new_alias!r}: {exc}") from exc

    def insert_documents(
        self,
        name: str,
        file_ids: list[str],
        texts: list[str],
        vectors: list[list[float]],
    ) -> None:
        if not (len(file_ids) == len(texts) == len(vectors)):
            raise ValidationError(
                "file_ids, texts and vectors must have equal length "
                f"(got {len(file_ids)}, {len(texts)}, {len(vectors)})"
            )
        if not vectors:
            return
        client, models = self._client_and_models()
        points = [
            models.PointStruct(
                id=new_uuid(),
                vector=vector,
                payload={PAYLOAD_FILE_ID: file_id, PAYLOAD_TEXT: text},
            )
            for file_id, text, vector in zip(file_ids, texts, vectors)
        ]
        try:
            client.upsert(collection_name=name, wait=True, points=points)
        except Exception as exc:
            raise InternalError(f"insert {len(points)} documents into {name!r}: {exc}") from exc

    def delete_documents(self, name: str, file_id: str) -> None:
        client, models = self._client_and_models()
        selector = models.FilterSelector(filter=self._file_filter(models, file_id))
        try:
            client.delete(collection_name=name, points_selector=selector, wait=True)
        except Exception as exc:
            raise InternalError(f"delete documents of {file_id!r} from {name!r}: {exc}") from exc

    def search(self, name: str, vector: list[float], k: int) -> list[str]:
        client, _ = self._client_and_models()
        try:
            response = client.query_points(
                collection_name=name,
                query=vector,
                with_payload=True,
                with_vectors=False,
                limit=max(1, k),
            )
        except Exception as exc:
            raise InternalError(f"search {name!r}: {exc}") from exc
        out: list[str] = []
        for hit in getattr(response, "points", []) or []:
            payload = dict(getattr(hit, "payload", {}) or {})
            out.append(str(payload.get(PAYLOAD_TEXT, "")))
        return out

    def count_documents(self, name: str, file_id: str | None = None) -> int:
        client, models = self._client_and_models()
        count_filter = self._file_filter(models, file_id) if file_id else None
        try:
            result = client.count(collection_name=name, count_filter=count_filter, exact=True)
        except Exception as exc:
            raise InternalError(f"count documents in {name!r}: {exc}") from exc
        return int(getattr(result, "count", 0))

    def list_collections(self) -> list[str]:
        client, _ = self._client_and_models()
        try:
            response = client.get_collections()
        except Exception as exc:
            raise InternalError(f"list collections: {exc}") from exc
        return sorted(item.name for item in response.collections)

    @staticmethod
    def _file_filter(models, file_id: str):
        return models.Filter(
            must=[models.FieldCondition(key=PAYLOAD_FILE_ID, match=models.MatchValue(value=file_id))]
        )

    def _client_and_models(self):
        if self._client is not None and self._models is not None:
            return self._client, self._models

        try:
            from qdrant_client import QdrantClient
            from qdrant_client.http import models
        except ImportError as exc:  # pragma: no cover - dependency guard
            raise InternalError(
                "Qdrant dependency is missing. Install with `pip install -e .`."
            ) from exc

        if self.server_url:
            logger.info("Connecting to Qdrant at %s", self.server_url)
            self._client = QdrantClient(
                url=self.server_url,
                api_key=self.api_key,
                timeout=self.timeout_seconds,
            )
        elif self.location == IN_MEMORY_LOCATION:
            self._client = QdrantClient(location=IN_MEMORY_LOCATION)
        else:
            if self.storage_path is None:
                raise InternalError("A Qdrant URL or local storage path is required")
            self._client = self._open_local_client(QdrantClient, self.storage_path)
        self._models = models
        return self._client, self._models

    def _open_local_client(self, qdrant_client_cls: type, base_path: Path):
        target = base_path.expanduser().resolve()
        target.mkdir(parents=True, exist_ok=True)
        try:
            return qdrant_client_cls(path=str(target))
        except Exception as exc:
            if "already accessed by another instance of qdrant client" not in str(exc).lower():
                raise InternalError(f"open local Qdrant storage {target}: {exc}") from exc
            raise InternalError(
                f"Local Qdrant storage {target} is locked by another process (pid {os.getpid()} "
                "cannot open it). Stop the other process or set VSM_QDRANT_URL to use a server."
            ) from exc
